# src/trm/models/trm_model.py

import logging
import math
from typing import Callable, Iterable, List, Optional, Sequence

import torch
import torch.nn as nn

from ..core.embedding import chess_position_embeddings, grid_position_embeddings
from ..core.exceptions import InvalidTokenError, ShapeMismatchError
from ..core.layers import InitFn, ReasoningBlock
from ..core.tensor import Tensor
from ..core.types import (
    ActivationStats,
    STATE_SAMPLE_SIZE,
    StepResult,
    TRMConfig,
    validate_config,
)
from .heads import DEFAULT_TOP_K, MoveCandidate, confidence_from_state, decode, rank_moves

logger = logging.getLogger(__name__)

StepCallback = Callable[[StepResult], None]


def make_generator(seed: Optional[int] = None) -> torch.Generator:
    """Returns a CPU generator, seeded when seed is given."""
    generator = torch.Generator()
    if seed is None:
        generator.seed()
    else:
        generator.manual_seed(seed)
    return generator


class RecursiveReasoningModel(nn.Module):
    """
    Hierarchical recursive refinement engine.

    Two latent states of shape (seq_len, hidden_size) are refined by one
    ordered list of shared reasoning blocks:

        inner step:  z_L = blocks(z_L, z_H + embed(tokens))
        outer step:  z_H = blocks(z_H, z_L)

    Each outer cycle runs l_cycles inner steps followed by one outer step,
    for h_cycles outer cycles. The final coarse state z_H is decoded per
    position with the output head.

    The schedule can be run to completion with `forward` or one transition
    at a time with `step`. Both go through the same transition methods, so
    for the same weights and input they reach the same terminal state.

    An instance is not thread-safe; callers serialise access to it.
    """

    def __init__(
        self,
        config: TRMConfig,
        generator: Optional[torch.Generator] = None,
        init_fn: Optional[InitFn] = None
    ):
        """
        Args:
            config (TRMConfig): Model configuration.
            generator (Optional[torch.Generator]): Randomness for all weights.
                Defaults to a generator seeded from config.seed (or fresh
                entropy when config.seed is None).
            init_fn (Optional[InitFn]): Weight initialiser with the signature of
                Tensor.gaussian. Replaces every random draw when given.
        """
        super(RecursiveReasoningModel, self).__init__()
        validate_config(config)
        self.config = config
        if generator is None:
            generator = make_generator(config.seed)
        init = init_fn or Tensor.gaussian

        hidden = config.hidden_size
        init_std = 1.0 / math.sqrt(hidden)

        logger.info("Initializing TRM with hidden_size=%d, H=%d, L=%d, layers=%d",
                    hidden, config.h_cycles, config.l_cycles, config.l_layers)

        # Token embeddings (V, H)
        self.register_buffer(
            'embed_tokens', init(config.vocab_size, hidden, init_std, generator).data)

        # One ordered block list shared by the inner and outer updates
        self.l_layers = nn.ModuleList([
            ReasoningBlock(
                hidden,
                config.expansion,
                config.seq_len,
                use_mlp_t=config.use_mlp_t,
                rms_eps=config.rms_eps,
                generator=generator,
                init_fn=init_fn,
            )
            for _ in range(config.l_layers)
        ])

        # Output head (H, V) and coordinate-pair heads (H, L)
        self.register_buffer('lm_head', init(hidden, config.vocab_size, init_std, generator).data)
        self.register_buffer('from_head', init(hidden, config.seq_len, init_std, generator).data)
        self.register_buffer('to_head', init(hidden, config.seq_len, init_std, generator).data)

        # Per-position initial states, broadcast over the sequence on reset
        self.register_buffer('h_init', init(1, hidden, 1.0, generator).data)
        self.register_buffer('l_init', init(1, hidden, 1.0, generator).data)

        if config.position_encoding == 'grid':
            position = grid_position_embeddings(config.seq_len, hidden)
        elif config.position_encoding == 'chess':
            position = chess_position_embeddings(hidden)
        else:
            position = None
        self.register_buffer('position_embed', None if position is None else position.data)

        self.reset()
        logger.info("TRM ready: %d parameters", self.num_parameters())

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Restores both states to their initial vectors and zeroes the counters."""
        seq_len = self.config.seq_len
        self._z_h = Tensor(self.h_init.expand(seq_len, -1).clone())
        self._z_l = Tensor(self.l_init.expand(seq_len, -1).clone())
        self.current_h = 0
        self.current_l = 0
        self.total_steps = 0

    def coarse_state(self) -> Tensor:
        """Copy of the current z_H. Writing to it does not touch the model."""
        return Tensor(self._z_h.data.clone())

    def fine_state(self) -> Tensor:
        """Copy of the current z_L."""
        return Tensor(self._z_l.data.clone())

    def is_complete(self) -> bool:
        return self.current_h == self.config.h_cycles

    def num_parameters(self) -> int:
        return sum(b.numel() for b in self.buffers())

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    def _check_tokens(self, tokens: Iterable[int]) -> List[int]:
        token_list = [int(t) for t in tokens]
        if len(token_list) != self.config.seq_len:
            raise ShapeMismatchError(f"Input length mismatch. "
                                     f"Expected: {self.config.seq_len}, Got: {len(token_list)}")
        for i, token in enumerate(token_list):
            if token < 0:
                raise InvalidTokenError(f"Negative token {token} at position {i}")
            if token >= self.config.vocab_size and self.config.token_policy == 'reject':
                raise InvalidTokenError(f"Token {token} at position {i} is outside "
                                        f"the vocabulary of size {self.config.vocab_size}")
        return token_list

    def embed(self, tokens: Sequence[int]) -> Tensor:
        """
        Looks up token embeddings, adds position features when configured,
        and scales by sqrt(hidden_size).

        Under the 'ignore' token policy, tokens >= vocab_size contribute a
        zero token embedding.

        Args:
            tokens (Sequence[int]): Length seq_len.

        Returns:
            Tensor: Shape (seq_len, hidden_size).
        """
        token_list = self._check_tokens(tokens)
        vocab_size = self.config.vocab_size

        index = torch.tensor(token_list, dtype=torch.long)
        valid = index < vocab_size
        embedded = self.embed_tokens[index.clamp(max=vocab_size - 1)]
        embedded = embedded * valid.unsqueeze(1).to(embedded.dtype)

        if self.position_embed is not None:
            embedded = embedded + self.position_embed

        return Tensor(embedded).scale(math.sqrt(self.config.hidden_size))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _run_blocks(self, hidden_states: Tensor, injection: Tensor) -> Tensor:
        for layer in self.l_layers:
            hidden_states = layer(hidden_states, injection)
        return hidden_states

    def _inner_step(self, input_embed: Tensor) -> None:
        # z_L = blocks(z_L, z_H + input)
        combined = self._z_h.add(input_embed)
        self._z_l = self._run_blocks(self._z_l, combined)
        self.current_l += 1
        self.total_steps += 1

    def _outer_step(self) -> None:
        # z_H = blocks(z_H, z_L)
        self._z_h = self._run_blocks(self._z_h, self._z_l)
        self.current_h += 1
        self.current_l = 0

    def _step_result(self, phase: str) -> StepResult:
        return StepResult(
            h_step=self.current_h,
            l_step=self.current_l,
            total_steps=self.total_steps,
            phase=phase,
            confidence=self.confidence(),
            z_h_sample=self._z_h.values()[:STATE_SAMPLE_SIZE],
            z_l_sample=self._z_l.values()[:STATE_SAMPLE_SIZE],
            stats=self._z_h.activation_stats(),
        )

    @torch.no_grad()
    def step(self, tokens: Sequence[int], callback: Optional[StepCallback] = None) -> StepResult:
        """
        Performs exactly one transition.

        An inner step runs while the inner counter is below l_cycles,
        otherwise an outer step runs. Once all outer cycles are done the
        call performs no work and reports phase 'complete'.

        Args:
            tokens (Sequence[int]): Input tokens, length seq_len.
            callback (Optional[StepCallback]): Called with the result.

        Returns:
            StepResult: Snapshot after the transition.
        """
        input_embed = self.embed(tokens)

        if self.is_complete():
            phase = 'complete'
        elif self.current_l < self.config.l_cycles:
            self._inner_step(input_embed)
            phase = 'inner'
        else:
            self._outer_step()
            phase = 'outer'

        result = self._step_result(phase)
        logger.debug("step phase=%s h=%d l=%d total=%d confidence=%.4f",
                     phase, result.h_step, result.l_step, result.total_steps,
                     result.confidence)
        if callback is not None:
            callback(result)
        return result

    @torch.no_grad()
    def forward(
        self,
        tokens: Sequence[int],
        callbacks: Optional[Sequence[StepCallback]] = None
    ) -> List[int]:
        """
        Resets the states and runs the full schedule.

        Args:
            tokens (Sequence[int]): Input tokens, length seq_len.
            callbacks (Optional[Sequence[StepCallback]]): Each is called with
                the StepResult of every transition, in order.

        Returns:
            List[int]: Decoded token per position.
        """
        input_embed = self.embed(tokens)
        self.reset()
        callbacks = list(callbacks or [])

        for _ in range(self.config.h_cycles):
            for _ in range(self.config.l_cycles):
                self._inner_step(input_embed)
                self._notify(callbacks, 'inner')
            self._outer_step()
            self._notify(callbacks, 'outer')

        logger.debug("forward complete after %d inner steps, confidence=%.4f",
                     self.total_steps, self.confidence())
        return self.current_output()

    def _notify(self, callbacks: List[StepCallback], phase: str) -> None:
        if not callbacks:
            return
        result = self._step_result(phase)
        for callback in callbacks:
            callback(result)

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def logits(self) -> Tensor:
        """Output logits of the current coarse state. Shape: (seq_len, vocab_size)"""
        return self._z_h.matmul(Tensor(self.lm_head))

    def current_output(self) -> List[int]:
        """Arg-max decode of the current (possibly unfinished) coarse state."""
        return decode(self._z_h, Tensor(self.lm_head))

    def confidence(self) -> float:
        return confidence_from_state(self._z_h)

    def activation_stats(self) -> ActivationStats:
        return self._z_h.activation_stats()

    def predict_moves(
        self,
        occupancy: Sequence[int],
        empty_token: int = 0,
        top_k: int = DEFAULT_TOP_K
    ) -> List[MoveCandidate]:
        """Coordinate-pair head over the current coarse state."""
        return rank_moves(
            self._z_h,
            Tensor(self.from_head),
            Tensor(self.to_head),
            occupancy,
            empty_token=empty_token,
            top_k=top_k,
        )
