# src/trm/tasks/maze.py

from typing import List, Sequence

from ..core.exceptions import InvalidTokenError, ShapeMismatchError

PATH = 0
WALL = 1
START = 2
END = 3

SYMBOLS = {PATH: ' ', WALL: '#', START: 'S', END: 'E'}


def encode_maze(grid: Sequence[int], width: int, height: int) -> List[int]:
    """Flat width*height grid of PATH/WALL/START/END tokens."""
    if len(grid) != width * height:
        raise ShapeMismatchError(f"Maze grid needs {width * height} cells, got {len(grid)}")
    tokens = [int(v) for v in grid]
    for i, v in enumerate(tokens):
        if v not in SYMBOLS:
            raise InvalidTokenError(f"Cell {i} holds {v}, expected one of {sorted(SYMBOLS)}")
    return tokens


def decode_maze_output(output: Sequence[int], width: int) -> str:
    """Renders one text line per maze row; unknown tokens show as '?'."""
    lines = []
    for r in range(0, len(output), width):
        lines.append(''.join(SYMBOLS.get(v, '?') for v in output[r:r + width]))
    return '\n'.join(lines)
