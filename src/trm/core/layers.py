# src/trm/core/layers.py

import math
from typing import Callable, Optional

import torch
import torch.nn as nn

from .exceptions import ShapeMismatchError
from .tensor import Tensor

# init_fn(rows, cols, std, generator) -> Tensor
InitFn = Callable[[int, int, float, Optional[torch.Generator]], Tensor]

# Intermediate widths are rounded up to a multiple of this value.
INTERMEDIATE_MULTIPLE = 64


def intermediate_size(hidden_size: int, expansion: float) -> int:
    """
    Width of the gated hidden layer: expansion * hidden * 2/3, rounded up
    to the next multiple of 64.
    """
    raw = expansion * hidden_size * 2.0 / 3.0
    return int(math.ceil(raw / INTERMEDIATE_MULTIPLE)) * INTERMEDIATE_MULTIPLE


class SwiGLU(nn.Module):
    """
    Gated feed-forward module.

    Computes (SiLU(x @ W_gate) * (x @ W_up)) @ W_down, where W_gate and W_up
    are stored side by side in a single (hidden, 2 * inter) projection.
    """

    def __init__(
        self,
        hidden_size: int,
        expansion: float,
        generator: Optional[torch.Generator] = None,
        init_fn: Optional[InitFn] = None
    ):
        """
        Args:
            hidden_size (int): Width of the rows this module consumes.
            expansion (float): Expansion ratio for the gated layer.
            generator (Optional[torch.Generator]): Randomness for initialisation.
            init_fn (Optional[InitFn]): Weight initialiser, Gaussian by default.
        """
        super(SwiGLU, self).__init__()
        init_fn = init_fn or Tensor.gaussian
        self.hidden_size = hidden_size
        self.inter_size = intermediate_size(hidden_size, expansion)
        init_std = 1.0 / math.sqrt(hidden_size)

        gate_up = init_fn(hidden_size, self.inter_size * 2, init_std, generator)
        down = init_fn(self.inter_size, hidden_size, init_std, generator)
        self.register_buffer('gate_up', gate_up.data)  # (H, 2I)
        self.register_buffer('down', down.data)        # (I, H)

    def forward(self, x: Tensor) -> Tensor:
        """
        Args:
            x (Tensor): Shape (rows, hidden_size).

        Returns:
            Tensor: Shape (rows, hidden_size).
        """
        if x.cols != self.hidden_size:
            raise ShapeMismatchError(f"SwiGLU expects {self.hidden_size} columns, "
                                     f"got {x.cols}")
        proj = x.matmul(Tensor(self.gate_up))  # (rows, 2I)
        gate = proj.columns(0, self.inter_size)
        up = proj.columns(self.inter_size, 2 * self.inter_size)
        return gate.silu().mul(up).matmul(Tensor(self.down))


class ReasoningBlock(nn.Module):
    """
    The single transformation shared by both hierarchy levels.

    forward(state, injection):
        x = state + injection
        if mixing: x = rms_norm(x + mlp_t(x^T)^T)
        return rms_norm(x + mlp(x))

    The block has no notion of which level calls it. The mixing module
    runs over the transposed buffer, so its width is the sequence length.
    """

    def __init__(
        self,
        hidden_size: int,
        expansion: float,
        seq_len: int,
        use_mlp_t: bool = True,
        rms_eps: float = 1e-5,
        generator: Optional[torch.Generator] = None,
        init_fn: Optional[InitFn] = None
    ):
        super(ReasoningBlock, self).__init__()
        self.hidden_size = hidden_size
        self.seq_len = seq_len
        self.use_mlp_t = use_mlp_t
        self.rms_eps = rms_eps

        self.mlp = SwiGLU(hidden_size, expansion, generator, init_fn)
        self.mlp_t = SwiGLU(seq_len, expansion, generator, init_fn) if use_mlp_t else None

    def forward(self, hidden_states: Tensor, input_injection: Tensor) -> Tensor:
        """
        Args:
            hidden_states (Tensor): Shape (seq_len, hidden_size).
            input_injection (Tensor): Same shape as hidden_states.

        Returns:
            Tensor: Normalised updated states, same shape.
        """
        x = hidden_states.add(input_injection)

        if self.mlp_t is not None:
            # (L, H) -> (H, L): mix across positions, then back
            out = self.mlp_t(x.transpose()).transpose()
            x = x.add(out).rms_norm(self.rms_eps)

        out = self.mlp(x)
        return x.add(out).rms_norm(self.rms_eps)
