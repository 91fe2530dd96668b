# tests/test_heads.py

import pytest

from trm.core.exceptions import ShapeMismatchError
from trm.core.tensor import Tensor
from trm.models.heads import (
    argmax_decode,
    confidence_from_state,
    decode,
    project_logits,
    rank_moves,
)


def move_fixture():
    """
    Four positions, hidden width 2. Only position 1 has a non-zero state,
    and the heads reward source 1 and target 3.
    """
    state = Tensor.from_rows([[0.0, 0.0], [1.0, 0.5], [0.0, 0.0], [0.0, 0.0]])
    source_head = Tensor.zeros(2, 4).with_row(0, [0.0, 5.0, 0.0, 0.0])
    target_head = Tensor.zeros(2, 4).with_row(0, [0.0, 0.0, 1.0, 5.0])
    return state, source_head, target_head


class TestDecode:
    """Unit tests for arg-max decoding and confidence."""

    def test_dominant_logit_selected(self):
        state = Tensor.from_rows([[1.0, 0.0], [0.0, 1.0]])
        # logits row 0 = [0.1, 0.2, 3.0], row 1 = [4.0, -1.0, 0.5]
        weight = Tensor.from_rows([[0.1, 0.2, 3.0], [4.0, -1.0, 0.5]])
        assert decode(state, weight) == [2, 0]

    def test_ties_resolve_to_lowest_index(self):
        logits = Tensor.from_rows([[1.0, 3.0, 3.0], [0.0, 0.0, 0.0]])
        assert argmax_decode(logits) == [1, 0]

    def test_project_logits_shape(self):
        logits = project_logits(Tensor.zeros(5, 4), Tensor.zeros(4, 7))
        assert logits.shape == (5, 7)

    def test_project_logits_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            project_logits(Tensor.zeros(5, 4), Tensor.zeros(3, 7))

    def test_confidence(self):
        assert confidence_from_state(Tensor.zeros(3, 3)) == pytest.approx(0.5)
        high = confidence_from_state(Tensor.from_values(1, 2, [-20.0, 20.0]))
        assert 0.99 < high <= 1.0


class TestRankMoves:
    """Unit tests for the coordinate-pair head."""

    def test_dominant_pair_ranked_first(self):
        state, source_head, target_head = move_fixture()
        moves = rank_moves(state, source_head, target_head, [1, 1, 1, 1])
        assert (moves[0].source, moves[0].target) == (1, 3)
        assert moves[0].score == pytest.approx(10.0)
        assert len(moves) == 10
        assert sum(m.confidence for m in moves) == pytest.approx(1.0, abs=1e-4)
        assert moves[0].confidence == max(m.confidence for m in moves)

    def test_excludes_self_moves_and_empty_sources(self):
        state, source_head, target_head = move_fixture()
        occupancy = [0, 7, 0, 0]
        moves = rank_moves(state, source_head, target_head, occupancy)
        assert len(moves) == 3
        assert all(m.source == 1 and m.target != 1 for m in moves)
        assert all(m.occupant == 7 for m in moves)
        assert [m.target for m in moves] == [3, 2, 0]
        assert sum(m.confidence for m in moves) == pytest.approx(1.0, abs=1e-4)

    def test_ties_keep_position_order(self):
        state = Tensor.zeros(3, 2)
        head = Tensor.zeros(2, 3)
        moves = rank_moves(state, head, head, [1, 1, 1])
        assert [(m.source, m.target) for m in moves] == [
            (0, 1), (0, 2), (1, 0), (1, 2), (2, 0), (2, 1)]
        for m in moves:
            assert m.confidence == pytest.approx(1.0 / 6.0)

    def test_empty_board(self):
        state, source_head, target_head = move_fixture()
        assert rank_moves(state, source_head, target_head, [0, 0, 0, 0]) == []

    def test_top_k(self):
        state, source_head, target_head = move_fixture()
        moves = rank_moves(state, source_head, target_head, [1, 1, 1, 1], top_k=2)
        assert len(moves) == 2

    def test_shape_checks(self):
        state, source_head, target_head = move_fixture()
        with pytest.raises(ShapeMismatchError):
            rank_moves(state, source_head.transpose(), target_head, [1, 1, 1, 1])
        with pytest.raises(ShapeMismatchError):
            rank_moves(state, source_head, target_head, [1, 1, 1])
