# src/trm/models/heads.py

from typing import List, NamedTuple, Sequence

import numpy as np
import torch

from ..core.exceptions import ShapeMismatchError
from ..core.tensor import Tensor

# Number of move candidates kept by the coordinate-pair head.
DEFAULT_TOP_K = 10


class MoveCandidate(NamedTuple):
    """One ranked (source, target) pair from the coordinate-pair head."""
    source: int
    target: int
    occupant: int
    score: float       # raw source + destination score
    confidence: float  # softmax over the returned candidates only


def project_logits(state: Tensor, weight: Tensor) -> Tensor:
    """Per-position logits: (L, H) @ (H, V) -> (L, V)."""
    return state.matmul(weight)


def argmax_decode(logits: Tensor) -> List[int]:
    """
    Index of the largest logit in every row. Ties resolve to the lowest
    index (numpy.argmax returns the first occurrence).
    """
    return np.argmax(logits.numpy(), axis=1).astype(int).tolist()


def decode(state: Tensor, weight: Tensor) -> List[int]:
    return argmax_decode(project_logits(state, weight))


def confidence_from_state(state: Tensor) -> float:
    """
    sigmoid(mean |state|).

    A saturating proxy for how extreme the activations are. It is not a
    calibrated probability and says nothing about correctness.
    """
    return float(torch.sigmoid(torch.tensor(state.abs_mean())))


def rank_moves(
    state: Tensor,
    source_head: Tensor,
    target_head: Tensor,
    occupancy: Sequence[int],
    empty_token: int = 0,
    top_k: int = DEFAULT_TOP_K
) -> List[MoveCandidate]:
    """
    Ranks (source, target) position pairs.

    source_score[s] = state[s] . source_head[:, s]
    dest_score[s][t] = state[s] . target_head[:, t]
    score(s, t) = source_score[s] + dest_score[s][t], s != t, occupancy[s] != empty

    The top_k pairs by descending score are returned with a softmax over
    their scores as confidences. Equal scores keep ascending (s, t) order.

    Args:
        state (Tensor): Coarse state. Shape: (L, H)
        source_head (Tensor): Shape: (H, L)
        target_head (Tensor): Shape: (H, L)
        occupancy (Sequence[int]): Token at every position, length L.
        empty_token (int): Token marking an empty position.
        top_k (int): Maximum number of candidates returned.

    Returns:
        List[MoveCandidate]: At most top_k candidates, best first.
    """
    seq_len, hidden = state.shape
    expected = (hidden, seq_len)
    if source_head.shape != expected or target_head.shape != expected:
        raise ShapeMismatchError(f"Move heads must be {expected}, got "
                                 f"{source_head.shape} and {target_head.shape}")
    if len(occupancy) != seq_len:
        raise ShapeMismatchError(f"Occupancy needs {seq_len} entries, got {len(occupancy)}")

    # Position-wise dot product with the matching head column
    source_scores = (state.data * source_head.data.t()).sum(dim=1)  # (L,)
    dest_scores = state.matmul(target_head).data                     # (L, L)

    moves = []
    for source in range(seq_len):
        occupant = int(occupancy[source])
        if occupant == empty_token:
            continue
        src = float(source_scores[source])
        row = dest_scores[source].tolist()
        for target in range(seq_len):
            if target == source:
                continue
            moves.append((src + row[target], source, target, occupant))

    moves.sort(key=lambda m: -m[0])  # stable: ties keep (source, target) order
    top = moves[:top_k]
    if not top:
        return []

    scores = Tensor.from_values(1, len(top), [m[0] for m in top])
    confidences = scores.softmax().values()
    return [
        MoveCandidate(source=s, target=t, occupant=o, score=score, confidence=c)
        for (score, s, t, o), c in zip(top, confidences)
    ]
