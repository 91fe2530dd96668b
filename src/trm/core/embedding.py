# src/trm/core/embedding.py

import math

import torch

from .tensor import Tensor


def grid_side(seq_len: int) -> int:
    """Side length of the square board holding seq_len cells."""
    side = math.isqrt(seq_len)
    if side * side != seq_len:
        raise ValueError(f"Grid position features need a square board, "
                         f"seq_len={seq_len} is not a perfect square")
    return side


def grid_position_embeddings(seq_len: int, hidden_size: int) -> Tensor:
    """
    Sinusoidal 2-D position features for a square board.

    Feature i of cell (row, col) uses frequency 10000^(-2*floor(i/2)/hidden)
    and cycles through sin(row), cos(row), sin(col), cos(col) as i % 4
    goes 0..3.

    Returns:
        Tensor: Shape (seq_len, hidden_size).
    """
    side = grid_side(seq_len)
    cells = torch.arange(seq_len)
    row = (cells // side).to(torch.float32).unsqueeze(1)  # (L, 1)
    col = (cells % side).to(torch.float32).unsqueeze(1)   # (L, 1)

    dims = torch.arange(hidden_size)
    freq = torch.pow(10000.0, -2.0 * (dims // 2).to(torch.float32) / hidden_size)  # (H,)
    kind = dims % 4

    embed = torch.where(kind == 0, torch.sin(row * freq),
            torch.where(kind == 1, torch.cos(row * freq),
            torch.where(kind == 2, torch.sin(col * freq), torch.cos(col * freq))))
    return Tensor(embed)


def chess_position_embeddings(hidden_size: int) -> Tensor:
    """
    Grid features for the 8x8 board plus two board-specific features:
    a centre-control term on every 8th dimension and a king-zone marker
    on the dimension after it.
    """
    embed = grid_position_embeddings(64, hidden_size).data.clone()

    for sq in range(64):
        row, col = divmod(sq, 8)
        center_dist = abs(3.5 - row) + abs(3.5 - col)
        embed[sq, 0::8] += (7 - center_dist) * 0.05
        if (row == 0 or row == 7) and (col < 3 or col > 4):
            embed[sq, 1::8] += 0.1

    return Tensor(embed)
