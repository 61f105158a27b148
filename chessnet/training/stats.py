"""Shared pipeline counters.

One ``PipelineStats`` is created per run and passed by reference to every
component that reports progress.
"""

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict


@dataclass
class PipelineStats:
    """Thread-safe run counters."""
    games_read: int = 0
    games_processed: int = 0
    samples_trained: int = 0
    batches: int = 0
    forced_flushes: int = 0
    memory_pauses: int = 0
    checkpoints: int = 0
    checkpoint_failures: int = 0
    bytes_read: int = 0
    last_loss: float = 0.0
    filtered: Counter = field(default_factory=Counter)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, name: str, amount: int = 1) -> int:
        """Add to a counter and return its new value."""
        with self._lock:
            value = getattr(self, name) + amount
            setattr(self, name, value)
            return value

    def record_filtered(self, reason: str) -> None:
        with self._lock:
            self.filtered[reason] += 1

    def record_batch(self, size: int, loss: float) -> None:
        with self._lock:
            self.batches += 1
            self.samples_trained += size
            self.last_loss = loss

    def set_bytes_read(self, value: int) -> None:
        with self._lock:
            self.bytes_read = value

    @property
    def games_filtered(self) -> int:
        with self._lock:
            return sum(self.filtered.values())

    def snapshot(self) -> Dict:
        """Consistent copy of all counters as a plain dict."""
        with self._lock:
            return {
                "games_read": self.games_read,
                "games_processed": self.games_processed,
                "games_filtered": sum(self.filtered.values()),
                "samples_trained": self.samples_trained,
                "batches": self.batches,
                "forced_flushes": self.forced_flushes,
                "memory_pauses": self.memory_pauses,
                "checkpoints": self.checkpoints,
                "checkpoint_failures": self.checkpoint_failures,
                "bytes_read": self.bytes_read,
                "last_loss": self.last_loss,
                "filtered": dict(self.filtered),
            }
