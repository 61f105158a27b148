"""Global configuration dataclasses for the chessnet engine."""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from .chess_env import BOARD_VECTOR_SIZE, MOVE_SPACE_SIZE


@dataclass
class NetworkConfig:
    """Configuration for the dense network architecture."""
    layer_sizes: Tuple[int, ...] = (BOARD_VECTOR_SIZE, 256, 256, MOVE_SPACE_SIZE)
    learning_rate: float = 0.001
    seed: Optional[int] = None


@dataclass
class TrainingConfig:
    """Configuration for the streaming training pipeline."""
    batch_size: int = 128
    buffer_size: int = 500           # Samples buffered before a flush
    epochs: int = 1
    max_games: Optional[int] = None  # Stop after this many games read
    min_plies: int = 5
    max_plies: Optional[int] = None
    shuffle_seed: Optional[int] = None
    num_workers: int = 1             # >1 enables the reader/worker variant
    queue_size: int = 5000           # Raw games queued between reader and workers
    compute_threads: Optional[int] = None  # Numeric pool size, independent of num_workers; None = cpu count


@dataclass
class CheckpointConfig:
    """Where and how often models are written."""
    checkpoint_path: str = "checkpoints/chessnet.checkpoint"
    checkpoint_interval: int = 50000  # Samples between checkpoints
    epoch_dir: str = "models"
    model_path: str = "models/chessnet.model"
    allow_partial_load: bool = False


@dataclass
class MemoryConfig:
    """Backpressure thresholds."""
    max_memory_mb: float = 1024
    max_memory_fraction: float = 0.8
    check_interval_games: int = 1000
    check_interval_seconds: float = 30.0
    pause_seconds: float = 0.2
    gc_interval_games: int = 5000


@dataclass
class FilterConfig:
    """Which games are used for training."""
    excluded_time_controls: Tuple[str, ...] = ("ultrabullet", "bullet")
    require_ratings: bool = True
    min_elo: int = 0
    draw_weight: float = 0.5


@dataclass
class ReportingConfig:
    """Progress output."""
    progress_interval: float = 1.0
    progress_bar: bool = False


@dataclass
class TrainingProfile:
    """Hardware-specific training configuration.

    Profiles are tuned for different CPU and memory budgets:
    - HIGH: Many-core server with plenty of RAM
    - MID: Desktop workstation
    - LOW: Laptop or small VM
    """
    name: str
    layer_sizes: Tuple[int, ...]
    workers: int
    batch_size: int
    buffer_size: int
    max_memory_mb: float


# Hardware profiles
PROFILES = {
    'high': TrainingProfile(
        name='high',
        layer_sizes=(BOARD_VECTOR_SIZE, 1024, 1024, MOVE_SPACE_SIZE),
        workers=8,
        batch_size=1024,
        buffer_size=8192,
        max_memory_mb=8192,
    ),
    'mid': TrainingProfile(
        name='mid',
        layer_sizes=(BOARD_VECTOR_SIZE, 512, 512, MOVE_SPACE_SIZE),
        workers=4,
        batch_size=512,
        buffer_size=2048,
        max_memory_mb=4096,
    ),
    'low': TrainingProfile(
        name='low',
        layer_sizes=(BOARD_VECTOR_SIZE, 256, 256, MOVE_SPACE_SIZE),
        workers=1,
        batch_size=128,
        buffer_size=500,
        max_memory_mb=1024,
    ),
}


@dataclass
class ChessNetConfig:
    """Master configuration combining all sub-configs."""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    checkpoint: CheckpointConfig = field(default_factory=CheckpointConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    reporting: ReportingConfig = field(default_factory=ReportingConfig)
    log_dir: str = "logs"

    @classmethod
    def from_profile(cls, name: str) -> "ChessNetConfig":
        """Build a config from a named hardware profile."""
        if name not in PROFILES:
            raise ValueError(f"Unknown profile {name!r}, expected one of {sorted(PROFILES)}")
        profile = PROFILES[name]

        config = cls()
        config.network.layer_sizes = profile.layer_sizes
        config.training.num_workers = profile.workers
        config.training.batch_size = profile.batch_size
        config.training.buffer_size = profile.buffer_size
        config.memory.max_memory_mb = profile.max_memory_mb
        return config
