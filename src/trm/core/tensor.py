# src/trm/core/tensor.py

import math
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import torch

from .exceptions import ShapeMismatchError
from .types import ActivationStats

# Lower bound for the first uniform sample of the Box-Muller transform.
BOX_MULLER_MIN_UNIFORM = 1e-10


class Tensor:
    """
    Dense 2-D buffer of 32-bit floats in row-major order.

    Tensor is a value type: every operation returns a new Tensor and no
    method mutates the underlying buffer. Shape disagreements raise
    ShapeMismatchError, nothing is broadcast, padded or truncated.

    Note on determinism: `matmul` delegates the inner-product accumulation
    to torch, which may reorder (and parallelise) the summation. The low
    order bits of results may therefore differ between builds or thread
    counts. This is ordinary floating point non-associativity and not a
    correctness problem.
    """

    __slots__ = ('data',)

    def __init__(self, data: torch.Tensor):
        """
        Args:
            data (torch.Tensor): 2-D tensor. Converted to float32 if needed.
        """
        if not isinstance(data, torch.Tensor):
            raise TypeError(f"Tensor expects a torch.Tensor, got {type(data).__name__}")
        if data.dim() != 2:
            raise ShapeMismatchError(f"Tensor must be 2-D, got shape {tuple(data.shape)}")
        self.data = data.to(torch.float32).contiguous()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def zeros(cls, rows: int, cols: int) -> 'Tensor':
        return cls(torch.zeros(rows, cols, dtype=torch.float32))

    @classmethod
    def gaussian(
        cls,
        rows: int,
        cols: int,
        std: float = 1.0,
        generator: Optional[torch.Generator] = None
    ) -> 'Tensor':
        """
        Draws a buffer from N(0, std^2) with the Box-Muller transform.

        Args:
            rows (int): Number of rows.
            cols (int): Number of columns.
            std (float): Standard deviation.
            generator (Optional[torch.Generator]): Source of uniform samples.
                Pass a seeded generator for reproducible weights.

        Returns:
            Tensor: Shape (rows, cols).
        """
        n = rows * cols
        u1 = torch.rand(n, generator=generator, dtype=torch.float32)
        u2 = torch.rand(n, generator=generator, dtype=torch.float32)
        u1 = u1.clamp_min(BOX_MULLER_MIN_UNIFORM)  # keep log() finite
        z = torch.sqrt(-2.0 * torch.log(u1)) * torch.cos(2.0 * math.pi * u2)
        return cls((z * std).reshape(rows, cols))

    @classmethod
    def from_values(cls, rows: int, cols: int, values: Iterable[float]) -> 'Tensor':
        """Builds a tensor from a flat row-major sequence of rows*cols values."""
        flat = torch.tensor(list(values), dtype=torch.float32)
        if flat.numel() != rows * cols:
            raise ShapeMismatchError(f"Expected {rows * cols} values for shape "
                                     f"({rows}, {cols}), got {flat.numel()}")
        return cls(flat.reshape(rows, cols))

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> 'Tensor':
        """Builds a tensor from a list of equally long rows."""
        if len(rows) == 0:
            raise ShapeMismatchError("Cannot build a tensor from zero rows")
        width = len(rows[0])
        for i, row in enumerate(rows):
            if len(row) != width:
                raise ShapeMismatchError(f"Row {i} has {len(row)} values, expected {width}")
        return cls(torch.tensor([list(r) for r in rows], dtype=torch.float32))

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    @property
    def rows(self) -> int:
        return self.data.shape[0]

    @property
    def cols(self) -> int:
        return self.data.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, self.cols)

    @property
    def numel(self) -> int:
        return self.rows * self.cols

    def _check_same_shape(self, other: 'Tensor', op: str) -> None:
        if self.shape != other.shape:
            raise ShapeMismatchError(f"Shape mismatch for {op}: "
                                     f"{self.shape} vs {other.shape}")

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def add(self, other: 'Tensor') -> 'Tensor':
        self._check_same_shape(other, 'add')
        return Tensor(self.data + other.data)

    def sub(self, other: 'Tensor') -> 'Tensor':
        self._check_same_shape(other, 'sub')
        return Tensor(self.data - other.data)

    def mul(self, other: 'Tensor') -> 'Tensor':
        """Element-wise multiplication."""
        self._check_same_shape(other, 'mul')
        return Tensor(self.data * other.data)

    def scale(self, s: float) -> 'Tensor':
        return Tensor(self.data * s)

    def matmul(self, other: 'Tensor') -> 'Tensor':
        """Matrix product self @ other. Requires self.cols == other.rows."""
        if self.cols != other.rows:
            raise ShapeMismatchError(f"Matrix dimensions don't match for matmul: "
                                     f"{self.shape} @ {other.shape}")
        return Tensor(torch.matmul(self.data, other.data))

    def transpose(self) -> 'Tensor':
        # t() of a single row or column is already contiguous, so copy explicitly
        return Tensor(self.data.t().clone())

    __add__ = add
    __sub__ = sub
    __mul__ = mul
    __matmul__ = matmul

    # ------------------------------------------------------------------
    # Normalisation and activations
    # ------------------------------------------------------------------

    def rms_norm(self, eps: float = 1e-5) -> 'Tensor':
        """Divides each row by sqrt(mean(row^2) + eps)."""
        rms = torch.sqrt(self.data.pow(2).mean(dim=1, keepdim=True) + eps)
        return Tensor(self.data / rms)

    def silu(self) -> 'Tensor':
        """SiLU (Swish): x * sigmoid(x)."""
        return Tensor(self.data * torch.sigmoid(self.data))

    def softmax(self) -> 'Tensor':
        """Row-wise softmax with max subtraction for numerical stability."""
        shifted = self.data - self.data.max(dim=1, keepdim=True).values
        exp = torch.exp(shifted)
        return Tensor(exp / exp.sum(dim=1, keepdim=True))

    # ------------------------------------------------------------------
    # Slicing
    # ------------------------------------------------------------------

    def columns(self, start: int, stop: int) -> 'Tensor':
        """Copy of columns [start, stop)."""
        if not 0 <= start <= stop <= self.cols:
            raise ShapeMismatchError(f"Column range [{start}, {stop}) out of bounds "
                                     f"for {self.cols} columns")
        return Tensor(self.data[:, start:stop].clone())

    def row(self, i: int) -> List[float]:
        return self.data[i].tolist()

    def with_row(self, i: int, values: Sequence[float]) -> 'Tensor':
        """Copy of this tensor with row i replaced by values."""
        if len(values) != self.cols:
            raise ShapeMismatchError(f"Row needs {self.cols} values, got {len(values)}")
        out = self.data.clone()
        out[i] = torch.tensor(list(values), dtype=torch.float32)
        return Tensor(out)

    # ------------------------------------------------------------------
    # Reductions
    # ------------------------------------------------------------------

    def mean(self) -> float:
        return float(self.data.mean())

    def std(self) -> float:
        """Population standard deviation of all elements."""
        centered = self.data - self.data.mean()
        return float(torch.sqrt(centered.pow(2).mean()))

    def abs_mean(self) -> float:
        return float(self.data.abs().mean())

    def activation_stats(self) -> ActivationStats:
        return ActivationStats(
            min=float(self.data.min()),
            max=float(self.data.max()),
            abs_mean=self.abs_mean(),
        )

    # ------------------------------------------------------------------
    # Comparison and export
    # ------------------------------------------------------------------

    def equal(self, other: 'Tensor') -> bool:
        """Exact equality of shape and every element."""
        return self.shape == other.shape and torch.equal(self.data, other.data)

    def allclose(self, other: 'Tensor', atol: float = 1e-5, rtol: float = 0.0) -> bool:
        return self.shape == other.shape and torch.allclose(
            self.data, other.data, atol=atol, rtol=rtol)

    def __eq__(self, other):
        if not isinstance(other, Tensor):
            return NotImplemented
        return self.equal(other)

    __hash__ = None

    def values(self) -> List[float]:
        """Flat row-major copy of the buffer."""
        return self.data.reshape(-1).tolist()

    def numpy(self) -> np.ndarray:
        return self.data.detach().cpu().numpy().copy()

    def __repr__(self) -> str:
        return f"Tensor(rows={self.rows}, cols={self.cols})"
