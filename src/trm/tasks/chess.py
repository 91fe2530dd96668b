# src/trm/tasks/chess.py

from typing import List, Sequence

from ..core.embedding import chess_position_embeddings
from ..core.exceptions import InvalidTokenError, ShapeMismatchError
from ..models.heads import MoveCandidate

BOARD_SIZE = 8
NUM_SQUARES = BOARD_SIZE * BOARD_SIZE
FILES = 'abcdefgh'

# '.' = empty, white PNBRQK = 1..6, black pnbrqk = 7..12
PIECES = '.PNBRQKpnbrqk'
PIECE_TOKENS = {piece: i for i, piece in enumerate(PIECES)}
EMPTY = 0

__all__ = [
    'PIECES', 'PIECE_TOKENS', 'EMPTY',
    'encode_board', 'square_name', 'square_index',
    'decode_move', 'describe_move', 'chess_position_embeddings',
]


def _expand_fen(placement: str) -> str:
    rows = placement.split('/')
    if len(rows) != BOARD_SIZE:
        raise ShapeMismatchError(f"FEN placement needs {BOARD_SIZE} ranks, got {len(rows)}")
    board = []
    for rank in rows:
        expanded = ''.join('.' * int(ch) if ch.isdigit() else ch for ch in rank)
        if len(expanded) != BOARD_SIZE:
            raise ShapeMismatchError(f"FEN rank {rank!r} does not cover {BOARD_SIZE} files")
        board.append(expanded)
    return ''.join(board)


def encode_board(board: str) -> List[int]:
    """
    Converts a board to tokens, square 0 = a8 and square 63 = h1.

    Args:
        board (str): 64 characters of PIECES (whitespace ignored), or the
            piece-placement field of a FEN string.

    Returns:
        List[int]: 64 tokens.
    """
    if '/' in board:
        board = _expand_fen(board.split()[0])
    squares = ''.join(board.split())
    if len(squares) != NUM_SQUARES:
        raise ShapeMismatchError(f"Board needs {NUM_SQUARES} squares, got {len(squares)}")
    try:
        return [PIECE_TOKENS[ch] for ch in squares]
    except KeyError as exc:
        raise InvalidTokenError(f"Unknown piece symbol {exc.args[0]!r}") from exc


def square_name(index: int) -> str:
    """Algebraic name of a square index (0 = a8, 63 = h1)."""
    if not 0 <= index < NUM_SQUARES:
        raise InvalidTokenError(f"Square index {index} out of range")
    row, col = divmod(index, BOARD_SIZE)
    return f"{FILES[col]}{BOARD_SIZE - row}"


def square_index(name: str) -> int:
    if len(name) != 2 or name[0] not in FILES or not name[1].isdigit():
        raise InvalidTokenError(f"Invalid square name {name!r}")
    rank = int(name[1])
    if not 1 <= rank <= BOARD_SIZE:
        raise InvalidTokenError(f"Invalid square name {name!r}")
    return (BOARD_SIZE - rank) * BOARD_SIZE + FILES.index(name[0])


def decode_move(output: Sequence[int]) -> str:
    """Translates a [source, target] buffer to coordinate notation, e.g. 'e2e4'."""
    if len(output) != 2:
        raise ShapeMismatchError(f"Move buffer needs 2 entries, got {len(output)}")
    return square_name(int(output[0])) + square_name(int(output[1]))


def describe_move(candidate: MoveCandidate) -> str:
    """Human-readable candidate, e.g. 'N g1-f3 (41.2%)'."""
    if 0 < candidate.occupant < len(PIECES):
        piece = PIECES[candidate.occupant].upper()
    else:
        piece = '?'
    return (f"{piece} {square_name(candidate.source)}-{square_name(candidate.target)} "
            f"({candidate.confidence * 100:.1f}%)")
