"""chessnet: chess move prediction with a hand-written dense network.

A numpy implementation of a fully connected ReLU network trained on PGN game
archives, with no ML framework underneath.
"""

__version__ = "0.1.0"

from .config import (
    ChessNetConfig,
    NetworkConfig,
    TrainingConfig,
    CheckpointConfig,
    MemoryConfig,
    FilterConfig,
    ReportingConfig,
    TrainingProfile,
    PROFILES,
)
from .utils import (
    epoch_model_filename,
    parse_model_filename,
    unique_path,
    find_largest_archive,
    prepend_line,
)

__all__ = [
    "ChessNetConfig",
    "NetworkConfig",
    "TrainingConfig",
    "CheckpointConfig",
    "MemoryConfig",
    "FilterConfig",
    "ReportingConfig",
    "TrainingProfile",
    "PROFILES",
    "epoch_model_filename",
    "parse_model_filename",
    "unique_path",
    "find_largest_archive",
    "prepend_line",
]
