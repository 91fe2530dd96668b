from .core.exceptions import (
    TRMError as TRMError,
    ShapeMismatchError as ShapeMismatchError,
    InvalidTokenError as InvalidTokenError,
)
from .core.tensor import Tensor as Tensor
from .core.types import (
    TRMConfig as TRMConfig,
    StepResult as StepResult,
    ActivationStats as ActivationStats,
    validate_config as validate_config,
    default_config as default_config,
    sudoku_config as sudoku_config,
    maze_config as maze_config,
    chess_config as chess_config,
)
from .core.layers import SwiGLU as SwiGLU, ReasoningBlock as ReasoningBlock
from .models.trm_model import (
    RecursiveReasoningModel as RecursiveReasoningModel,
    make_generator as make_generator,
)
from .models.heads import MoveCandidate as MoveCandidate
from .tasks.sudoku import (
    validate_sudoku as validate_sudoku,
    decode_sudoku_output as decode_sudoku_output,
)
from .tasks.chess import decode_move as decode_move, describe_move as describe_move
from .training.heuristic import (
    ConstraintNudgePolicy as ConstraintNudgePolicy,
    AdjustmentReport as AdjustmentReport,
)
from .bindings import HostEngine as HostEngine, InferenceEngine as InferenceEngine

__version__ = "0.1.0"
