# src/trm/tasks/sudoku.py

from typing import List, Sequence, Set

from ..core.exceptions import InvalidTokenError, ShapeMismatchError

GRID_SIZE = 9
BOX_SIZE = 3
NUM_CELLS = GRID_SIZE * GRID_SIZE
EMPTY = 0


def _units():
    """Every row, column and 3x3 box as a list of cell positions."""
    rows = [[r * GRID_SIZE + c for c in range(GRID_SIZE)] for r in range(GRID_SIZE)]
    cols = [[r * GRID_SIZE + c for r in range(GRID_SIZE)] for c in range(GRID_SIZE)]
    boxes = []
    for bi in range(BOX_SIZE):
        for bj in range(BOX_SIZE):
            boxes.append([
                (bi * BOX_SIZE + i) * GRID_SIZE + (bj * BOX_SIZE + j)
                for i in range(BOX_SIZE)
                for j in range(BOX_SIZE)
            ])
    return rows + cols + boxes


UNITS = _units()


def _peers(position: int) -> Set[int]:
    peers = set()
    for unit in UNITS:
        if position in unit:
            peers.update(unit)
    peers.discard(position)
    return peers


def validate_sudoku(grid: Sequence[int]) -> bool:
    """
    True iff the grid has 81 cells and every row, column and 3x3 box holds
    the digits 1-9 exactly once.
    """
    if len(grid) != NUM_CELLS:
        return False
    for unit in UNITS:
        values = [grid[p] for p in unit]
        if any(v < 1 or v > GRID_SIZE for v in values):
            return False
        if len(set(values)) != GRID_SIZE:
            return False
    return True


def encode_sudoku(grid: Sequence[int]) -> List[int]:
    """
    Converts a 9x9 grid (flat, 0 = empty, 1-9 digits) to model tokens.
    """
    if len(grid) != NUM_CELLS:
        raise ShapeMismatchError(f"Sudoku grid needs {NUM_CELLS} cells, got {len(grid)}")
    tokens = [int(v) for v in grid]
    for i, v in enumerate(tokens):
        if v < 0 or v > GRID_SIZE:
            raise InvalidTokenError(f"Cell {i} holds {v}, expected 0-9")
    return tokens


def parse_sudoku(text: str) -> List[int]:
    """Parses digits with '.' or '0' for empty cells; whitespace is ignored."""
    cells = []
    for ch in text:
        if ch.isspace():
            continue
        if ch == '.':
            cells.append(EMPTY)
        elif ch.isdigit():
            cells.append(int(ch))
        else:
            raise InvalidTokenError(f"Unexpected character {ch!r} in Sudoku text")
    return encode_sudoku(cells)


def decode_sudoku_output(output: Sequence[int]) -> str:
    """Nine lines of nine characters, '.' for empty cells."""
    lines = []
    for r in range(0, len(output), GRID_SIZE):
        row = output[r:r + GRID_SIZE]
        lines.append(''.join('.' if v == EMPTY else str(v) for v in row))
    return '\n'.join(lines)


def cell_violations(grid: Sequence[int]) -> List[int]:
    """
    Positions whose value is outside 1-9 or repeated within one of the
    cell's row, column or box. Sorted ascending.
    """
    if len(grid) != NUM_CELLS:
        raise ShapeMismatchError(f"Sudoku grid needs {NUM_CELLS} cells, got {len(grid)}")
    bad = set()
    for unit in UNITS:
        seen = {}
        for p in unit:
            v = grid[p]
            if v < 1 or v > GRID_SIZE:
                bad.add(p)
                continue
            if v in seen:
                bad.add(p)
                bad.add(seen[v])
            else:
                seen[v] = p
    return sorted(bad)


def candidate_values(grid: Sequence[int], position: int) -> List[int]:
    """Digits not already used by any peer of the cell at position."""
    if not 0 <= position < NUM_CELLS:
        raise InvalidTokenError(f"Cell index {position} out of range")
    used = {grid[p] for p in _peers(position)}
    return [d for d in range(1, GRID_SIZE + 1) if d not in used]
