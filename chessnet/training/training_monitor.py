"""Progress reporting for long ingestion runs."""

import time
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

from tqdm import tqdm

from .memory import MemoryMonitor
from .stats import PipelineStats

logger = logging.getLogger(__name__)


@dataclass
class TrainingMetrics:
    """Tracks throughput over a rolling time window."""

    # Rolling window in seconds for rate calculations
    window_size: int = 60

    start_time: float = field(default_factory=time.time)

    _games_history: Deque = field(default_factory=lambda: deque(maxlen=120))
    _samples_history: Deque = field(default_factory=lambda: deque(maxlen=120))
    _batches_history: Deque = field(default_factory=lambda: deque(maxlen=120))

    def update(self, games: int, samples: int, batches: int = 0) -> None:
        """Record current cumulative counters."""
        now = time.time()
        self._games_history.append((now, games))
        self._samples_history.append((now, samples))
        self._batches_history.append((now, batches))

    def _calculate_rate(self, history: Deque) -> float:
        if len(history) < 2:
            return 0.0

        cutoff = time.time() - self.window_size
        recent = [(t, v) for t, v in history if t >= cutoff]
        if len(recent) < 2:
            recent = list(history)

        oldest_time, oldest_val = recent[0]
        newest_time, newest_val = recent[-1]
        time_diff = newest_time - oldest_time
        if time_diff <= 0:
            return 0.0
        return (newest_val - oldest_val) / time_diff

    @property
    def games_per_second(self) -> float:
        return self._calculate_rate(self._games_history)

    @property
    def samples_per_second(self) -> float:
        return self._calculate_rate(self._samples_history)

    @property
    def batches_per_second(self) -> float:
        return self._calculate_rate(self._batches_history)

    @property
    def elapsed_time(self) -> float:
        """Total elapsed time in seconds."""
        return time.time() - self.start_time

    @property
    def elapsed_time_str(self) -> str:
        return self._format_duration(self.elapsed_time)

    @staticmethod
    def _format_duration(seconds: float) -> str:
        """Format duration in seconds to human-readable string."""
        if seconds < 0:
            return "0s"

        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)

        if hours > 0:
            return f"{hours}h {minutes}m {secs}s"
        elif minutes > 0:
            return f"{minutes}m {secs}s"
        else:
            return f"{secs}s"


class ProgressReporter:
    """Periodically reports pipeline progress from a daemon thread.

    Only reads ``stats.snapshot()``, so it never holds up ingestion. With
    ``progress_bar`` set, a tqdm bar over archive bytes replaces log lines.
    """

    def __init__(
        self,
        stats: PipelineStats,
        interval: float = 1.0,
        memory_monitor: Optional[MemoryMonitor] = None,
        total_bytes: Optional[int] = None,
        progress_bar: bool = False
    ):
        """Initialize reporter.

        Args:
            stats: Shared run counters
            interval: Seconds between reports
            memory_monitor: Source of memory usage, if any
            total_bytes: Archive size for progress percentage
            progress_bar: Render a tqdm bar instead of log lines
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.stats = stats
        self.interval = interval
        self.memory_monitor = memory_monitor
        self.total_bytes = total_bytes
        self.progress_bar = progress_bar
        self.metrics = TrainingMetrics()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._pbar = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._stop_event.clear()
            if self.progress_bar:
                self._pbar = tqdm(
                    total=self.total_bytes,
                    unit="B",
                    unit_scale=True,
                    desc="Training",
                )
            self._thread = threading.Thread(target=self._run, name="chessnet-progress", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            thread.join()
            self._thread = None
            # Final report after the thread has exited
            self.report()
            if self._pbar is not None:
                self._pbar.close()
                self._pbar = None

    def __enter__(self) -> "ProgressReporter":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.report()

    def format_status(self, snapshot: dict) -> str:
        parts = [
            f"elapsed={self.metrics.elapsed_time_str}",
            f"games={snapshot['games_processed']}/{snapshot['games_read']}",
            f"samples={snapshot['samples_trained']}",
            f"samples/s={self.metrics.samples_per_second:.0f}",
            f"loss={snapshot['last_loss']:.4f}",
        ]
        if self.memory_monitor is not None:
            parts.append(f"mem={self.memory_monitor.used_mb():.0f}MB")
        if self.total_bytes:
            pct = min(100.0, snapshot["bytes_read"] / self.total_bytes * 100)
            parts.append(f"progress={pct:.1f}%")
        if snapshot["filtered"]:
            skipped = ", ".join(f"{k}={v}" for k, v in sorted(snapshot["filtered"].items()))
            parts.append(f"filtered[{skipped}]")
        return " | ".join(parts)

    def report(self) -> None:
        """Emit one progress report."""
        snapshot = self.stats.snapshot()
        self.metrics.update(snapshot["games_processed"], snapshot["samples_trained"], snapshot["batches"])

        if self._pbar is not None:
            self._pbar.n = snapshot["bytes_read"]
            self._pbar.set_postfix({
                "games": snapshot["games_processed"],
                "samples/s": f"{self.metrics.samples_per_second:.0f}",
                "loss": f"{snapshot['last_loss']:.4f}",
            })
            self._pbar.refresh()
        else:
            logger.info(self.format_status(snapshot))
