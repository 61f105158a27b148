"""Training pipeline components."""

from .pgn import (
    ArchiveReader,
    RawGame,
    GameRecord,
    GameFilter,
    GameSkipped,
    iter_raw_games,
    extract_moves,
    time_control_class,
)
from .samples import TrainingSample, GameConverter, outcome_weight
from .stats import PipelineStats
from .memory import MemoryMonitor
from .checkpointing import CheckpointManager
from .training_monitor import TrainingMetrics, ProgressReporter
from .pipeline import TrainingPipeline, PipelineState, PipelineResult

__all__ = [
    "ArchiveReader",
    "RawGame",
    "GameRecord",
    "GameFilter",
    "GameSkipped",
    "iter_raw_games",
    "extract_moves",
    "time_control_class",
    "TrainingSample",
    "GameConverter",
    "outcome_weight",
    "PipelineStats",
    "MemoryMonitor",
    "CheckpointManager",
    "TrainingMetrics",
    "ProgressReporter",
    "TrainingPipeline",
    "PipelineState",
    "PipelineResult",
]
