# src/trm/core/types.py

from typing import NamedTuple, Optional, List

# Supported ways of handling token indices >= vocab_size during embedding.
TOKEN_POLICIES = ('reject', 'ignore')

# Supported positional feature sets added to token embeddings.
POSITION_ENCODINGS = ('none', 'grid', 'chess')

# Number of leading state values copied into each StepResult.
STATE_SAMPLE_SIZE = 64


class TRMConfig(NamedTuple):
    """Hyperparameters for one recursive reasoning model."""
    hidden_size: int = 256
    num_heads: int = 8  # reserved, not used by the compute path
    expansion: float = 4.0
    h_cycles: int = 3  # outer (coarse) cycles
    l_cycles: int = 6  # inner (fine) cycles per outer cycle
    l_layers: int = 2  # number of shared reasoning blocks
    vocab_size: int = 12
    seq_len: int = 81
    use_mlp_t: bool = True  # cross-position mixing variant
    rms_eps: float = 1e-5
    token_policy: str = 'reject'  # 'reject' or 'ignore'
    position_encoding: str = 'none'  # 'none', 'grid' or 'chess'
    seed: Optional[int] = None


class ActivationStats(NamedTuple):
    """Diagnostic summary of a buffer."""
    min: float
    max: float
    abs_mean: float


class StepResult(NamedTuple):
    """Snapshot returned after one incremental transition."""
    h_step: int
    l_step: int
    total_steps: int
    phase: str  # 'inner', 'outer' or 'complete'
    confidence: float
    z_h_sample: List[float]
    z_l_sample: List[float]
    stats: ActivationStats


def validate_config(config: TRMConfig) -> None:
    """
    Checks that a configuration describes a buildable model.

    Raises:
        ValueError: If any count is not positive or an option is unknown.
    """
    counts = {
        'hidden_size': config.hidden_size,
        'num_heads': config.num_heads,
        'h_cycles': config.h_cycles,
        'l_cycles': config.l_cycles,
        'l_layers': config.l_layers,
        'vocab_size': config.vocab_size,
        'seq_len': config.seq_len,
    }
    for name, value in counts.items():
        if int(value) != value or value <= 0:
            raise ValueError(f"{name} must be a positive integer, got {value!r}")

    if config.expansion <= 0:
        raise ValueError(f"expansion must be positive, got {config.expansion!r}")
    if config.rms_eps <= 0:
        raise ValueError(f"rms_eps must be positive, got {config.rms_eps!r}")
    if config.token_policy not in TOKEN_POLICIES:
        raise ValueError(f"Unsupported token policy: {config.token_policy}. "
                         f"Supported policies: {', '.join(TOKEN_POLICIES)}")
    if config.position_encoding not in POSITION_ENCODINGS:
        raise ValueError(f"Unsupported position encoding: {config.position_encoding}. "
                         f"Supported encodings: {', '.join(POSITION_ENCODINGS)}")
    if config.position_encoding == 'chess' and config.seq_len != 64:
        raise ValueError(f"Chess position encoding requires seq_len=64, "
                         f"got {config.seq_len}")


def default_config(**overrides) -> TRMConfig:
    """General-purpose configuration (hidden 256, expansion 4)."""
    return TRMConfig()._replace(**overrides)


def sudoku_config(**overrides) -> TRMConfig:
    """Preset for 9x9 grid puzzles: 0 = empty, 1-9 digits, 2 spare symbols."""
    config = TRMConfig(
        hidden_size=128,
        num_heads=4,
        expansion=2.0,
        h_cycles=3,
        l_cycles=6,
        l_layers=2,
        vocab_size=12,
        seq_len=81,
        use_mlp_t=True,
    )
    return config._replace(**overrides)


def maze_config(**overrides) -> TRMConfig:
    """Preset for 15x15 pathfinding: path, wall, start, end."""
    config = TRMConfig(
        hidden_size=128,
        num_heads=4,
        expansion=2.0,
        h_cycles=3,
        l_cycles=4,
        l_layers=2,
        vocab_size=4,
        seq_len=225,
        use_mlp_t=True,
    )
    return config._replace(**overrides)


def chess_config(**overrides) -> TRMConfig:
    """Preset for 8x8 board positions with 13 piece tokens."""
    config = TRMConfig(
        hidden_size=128,
        num_heads=4,
        expansion=2.0,
        h_cycles=6,
        l_cycles=12,
        l_layers=2,
        vocab_size=13,
        seq_len=64,
        use_mlp_t=True,
        position_encoding='chess',
    )
    return config._replace(**overrides)
