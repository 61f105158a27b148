"""Model checkpointing during and after training."""

import logging
import threading
from pathlib import Path
from typing import Optional, Union

from ..neural import Network, save_model
from ..utils import epoch_model_filename, unique_path
from .stats import PipelineStats


logger = logging.getLogger(__name__)


class CheckpointManager:
    """Owns every model file a training run writes.

    Periodic checkpoints and epoch models are best effort: an ``OSError`` is
    logged and counted, and training continues. Only ``save_final`` raises.
    """

    def __init__(
        self,
        checkpoint_path: Union[str, Path],
        interval_samples: int = 50000,
        epoch_dir: Union[str, Path, None] = None,
        stats: Optional[PipelineStats] = None
    ):
        """Initialize checkpoint manager.

        Args:
            checkpoint_path: File rewritten by every periodic checkpoint
            interval_samples: Samples trained between periodic checkpoints
            epoch_dir: Directory for timestamped epoch models
            stats: Counters to update
        """
        if interval_samples <= 0:
            raise ValueError(f"interval_samples must be positive, got {interval_samples}")
        self.checkpoint_path = Path(checkpoint_path)
        self.interval_samples = interval_samples
        self.epoch_dir = Path(epoch_dir) if epoch_dir is not None else self.checkpoint_path.parent
        self.stats = stats if stats is not None else PipelineStats()
        self._last_checkpoint_samples = 0
        self._lock = threading.Lock()

    def maybe_checkpoint(self, network: Network, samples_trained: int) -> bool:
        """Checkpoint if ``interval_samples`` have been trained since the last one.

        Returns:
            True if a checkpoint was written
        """
        with self._lock:
            if samples_trained - self._last_checkpoint_samples < self.interval_samples:
                return False
            self._last_checkpoint_samples = samples_trained
        return self.checkpoint(network)

    def checkpoint(self, network: Network) -> bool:
        """Save the network to the checkpoint path; failures are non-fatal."""
        try:
            self.checkpoint_path.parent.mkdir(parents=True, exist_ok=True)
            save_model(network, self.checkpoint_path)
        except OSError as e:
            self.stats.increment("checkpoint_failures")
            logger.warning(f"Checkpoint to {self.checkpoint_path} failed: {e}")
            return False

        self.stats.increment("checkpoints")
        logger.info(f"Checkpoint saved: {self.checkpoint_path}")
        return True

    def save_epoch_model(self, network: Network, epoch: int, samples: int) -> Optional[Path]:
        """Write a timestamped model for a finished epoch.

        Returns:
            The written path, or None if the save failed
        """
        path = unique_path(self.epoch_dir / epoch_model_filename(epoch, samples))
        try:
            self.epoch_dir.mkdir(parents=True, exist_ok=True)
            save_model(network, path)
        except OSError as e:
            logger.warning(f"Could not save epoch {epoch} model to {path}: {e}")
            return None

        logger.info(f"Epoch {epoch} model saved: {path}")
        return path

    def save_final(self, network: Network, path: Union[str, Path]) -> Path:
        """Save the final model. Errors propagate."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        save_model(network, path)
        logger.info(f"Final model saved: {path}")
        return path
