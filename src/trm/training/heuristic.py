# src/trm/training/heuristic.py

import logging
from typing import Callable, List, NamedTuple, Optional, Sequence

import torch

from ..models.trm_model import RecursiveReasoningModel
from ..tasks.sudoku import candidate_values, cell_violations

logger = logging.getLogger(__name__)


class AdjustmentReport(NamedTuple):
    violations: int  # positions reported as violating a constraint
    adjusted: int    # positions whose weights were nudged


class ConstraintNudgePolicy:
    """
    Non-gradient weight adjustment driven by constraint violations.

    For every violating position i with predicted token p and preferred
    locally valid token c (c != p):

        lm_head[:, c]        += rate * z_H[i]
        lm_head[:, p]        -= rate * z_H[i]
        embed_tokens[tok[i]] += rate * (lm_head[:, c] - lm_head[:, p])

    This is a heuristic, not an optimiser. It only runs when called
    explicitly; the model's inference path never invokes it, and a
    disabled policy leaves every weight untouched.
    """

    def __init__(self, enabled: bool = False, rate: float = 0.01):
        if rate < 0:
            raise ValueError(f"rate must be non-negative, got {rate}")
        self.enabled = enabled
        self.rate = rate

    @torch.no_grad()
    def apply(
        self,
        model: RecursiveReasoningModel,
        tokens: Sequence[int],
        output: Sequence[int],
        violations: Sequence[int],
        candidates: Callable[[int], List[int]]
    ) -> AdjustmentReport:
        """
        Args:
            model (RecursiveReasoningModel): Model whose weights are nudged.
            tokens (Sequence[int]): Input tokens of the run.
            output (Sequence[int]): Decoded output of the run.
            violations (Sequence[int]): Violating positions.
            candidates (Callable): Locally valid tokens for a position.

        Returns:
            AdjustmentReport: Counts of violations and adjusted positions.
        """
        if not self.enabled or not violations:
            return AdjustmentReport(violations=len(violations), adjusted=0)

        vocab_size = model.config.vocab_size
        z_h = model.coarse_state().data
        adjusted = 0

        for position in violations:
            predicted = int(output[position])
            options = [c for c in candidates(position) if 0 <= c < vocab_size]
            if not options or options[0] == predicted:
                continue
            target = options[0]

            direction = self.rate * z_h[position]
            model.lm_head[:, target] += direction
            model.lm_head[:, predicted] -= direction

            token = int(tokens[position])
            if 0 <= token < vocab_size:
                delta = model.lm_head[:, target] - model.lm_head[:, predicted]
                model.embed_tokens[token] += self.rate * delta
            adjusted += 1

        logger.info("Constraint nudge: %d violations, %d positions adjusted (rate=%g)",
                    len(violations), adjusted, self.rate)
        return AdjustmentReport(violations=len(violations), adjusted=adjusted)


def sudoku_nudge(
    policy: ConstraintNudgePolicy,
    model: RecursiveReasoningModel,
    tokens: Sequence[int],
    output: Optional[Sequence[int]] = None
) -> AdjustmentReport:
    """
    Runs the policy against Sudoku constraints of the model's prediction.

    Given clues are treated as fixed: the prediction is overlaid with the
    non-empty input cells before violations are computed.
    """
    if output is None:
        output = model.current_output()
    grid = [t if t != 0 else o for t, o in zip(tokens, output)]
    violations = [p for p in cell_violations(grid) if tokens[p] == 0]
    return policy.apply(
        model,
        tokens,
        output,
        violations,
        lambda position: candidate_values(grid, position),
    )
