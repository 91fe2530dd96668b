# tests/conftest.py

import sys
from pathlib import Path

import pytest
import torch

SRC = Path(__file__).resolve().parents[1] / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from trm.core.types import TRMConfig  # noqa: E402


@pytest.fixture
def tiny_config():
    """Provide a small TRMConfig that runs quickly."""
    return TRMConfig(
        hidden_size=16,
        num_heads=2,
        expansion=2.0,
        h_cycles=2,
        l_cycles=3,
        l_layers=2,
        vocab_size=5,
        seq_len=9,
        use_mlp_t=True,
        seed=0,
    )


@pytest.fixture
def sample_tokens(tiny_config):
    """Provide a valid token sequence for tiny_config."""
    return [i % tiny_config.vocab_size for i in range(tiny_config.seq_len)]


@pytest.fixture
def generator():
    """Provide a seeded torch generator."""
    g = torch.Generator()
    g.manual_seed(1234)
    return g


@pytest.fixture
def solved_sudoku():
    """Provide a valid, fully filled 9x9 grid."""
    return [(r * 3 + r // 3 + c) % 9 + 1 for r in range(9) for c in range(9)]
