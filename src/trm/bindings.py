# src/trm/bindings.py

import abc
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np
import torch

from .core.tensor import Tensor
from .core.types import StepResult, TRMConfig
from .models.trm_model import RecursiveReasoningModel

TokenInput = Union[bytes, bytearray, Sequence[int], np.ndarray]

# Decoded tokens are returned as uint8.
HOST_MAX_VOCAB = 256


class InferenceEngine(abc.ABC):
    """
    Operation set every engine implementation exposes, native or managed.
    """

    @abc.abstractmethod
    def reset(self) -> None:
        ...

    @abc.abstractmethod
    def forward(self, tokens):
        ...

    @abc.abstractmethod
    def step(self, tokens):
        ...

    @abc.abstractmethod
    def current_output(self):
        ...

    @abc.abstractmethod
    def is_complete(self) -> bool:
        ...

    @abc.abstractmethod
    def coarse_state(self):
        ...

    @abc.abstractmethod
    def fine_state(self):
        ...


InferenceEngine.register(RecursiveReasoningModel)


def _as_token_list(tokens: TokenInput):
    if isinstance(tokens, (bytes, bytearray)):
        return list(tokens)
    return [int(t) for t in np.asarray(tokens).reshape(-1)]


def _step_info(result: StepResult) -> Dict[str, Any]:
    return {
        'h_step': result.h_step,
        'l_step': result.l_step,
        'total_steps': result.total_steps,
        'confidence': result.confidence,
        'z_h_activations': np.asarray(result.z_h_sample, dtype=np.float32),
        'z_l_activations': np.asarray(result.z_l_sample, dtype=np.float32),
    }


class HostEngine(InferenceEngine):
    """
    Adapter for embedding the engine in a foreign host.

    Speaks in flat buffers: token inputs as bytes or integer arrays,
    outputs as numpy uint8 arrays, states as flat float32 arrays and step
    snapshots as plain dictionaries. Decoded tokens must fit in a byte, so
    vocabularies are limited to HOST_MAX_VOCAB entries.
    """

    def __init__(
        self,
        config: TRMConfig,
        generator: Optional[torch.Generator] = None,
        model: Optional[RecursiveReasoningModel] = None
    ):
        if model is not None:
            config = model.config
        if config.vocab_size > HOST_MAX_VOCAB:
            raise ValueError(f"Host engine outputs uint8 tokens, vocab_size must be "
                             f"at most {HOST_MAX_VOCAB}, got {config.vocab_size}")
        self.model = model if model is not None else RecursiveReasoningModel(config, generator)
        self.config = self.model.config

    def reset(self) -> None:
        self.model.reset()

    def forward(self, tokens: TokenInput) -> np.ndarray:
        return np.asarray(self.model(_as_token_list(tokens)), dtype=np.uint8)

    def step(self, tokens: TokenInput) -> Dict[str, Any]:
        return _step_info(self.model.step(_as_token_list(tokens)))

    def current_output(self) -> np.ndarray:
        return np.asarray(self.model.current_output(), dtype=np.uint8)

    def is_complete(self) -> bool:
        return self.model.is_complete()

    def coarse_state(self) -> Tensor:
        return self.model.coarse_state()

    def fine_state(self) -> Tensor:
        return self.model.fine_state()

    def get_z_h(self) -> np.ndarray:
        """Flat row-major copy of the coarse state."""
        return self.model.coarse_state().numpy().reshape(-1)

    def get_z_l(self) -> np.ndarray:
        """Flat row-major copy of the fine state."""
        return self.model.fine_state().numpy().reshape(-1)


def normalize_activations(activations: Sequence[float]) -> np.ndarray:
    """
    Maps values linearly onto 0..255. A range below 1e-6 maps everything
    to 128.
    """
    values = np.asarray(activations, dtype=np.float32).reshape(-1)
    if values.size == 0:
        return np.zeros(0, dtype=np.uint8)
    lo, hi = float(values.min()), float(values.max())
    span = hi - lo
    if span < 1e-6:
        return np.full(values.size, 128, dtype=np.uint8)
    scaled = (values - lo) / span * 255.0
    return np.floor(scaled).clip(0, 255).astype(np.uint8)
