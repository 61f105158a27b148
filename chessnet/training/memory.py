"""Process memory monitoring for ingestion backpressure."""

import logging
from typing import Callable, Optional, Tuple

import psutil


logger = logging.getLogger(__name__)

MB = 1024 * 1024


def _psutil_usage() -> Tuple[int, int]:
    return psutil.Process().memory_info().rss, psutil.virtual_memory().total


class MemoryMonitor:
    """Reports whether the process is close to its memory ceiling.

    Memory is low when used memory exceeds ``max_memory_mb`` or exceeds
    ``max_memory_fraction`` of total system memory.
    """

    def __init__(
        self,
        max_memory_mb: float = 1024,
        max_memory_fraction: float = 0.8,
        usage: Optional[Callable[[], Tuple[int, int]]] = None
    ):
        """Initialize monitor.

        Args:
            max_memory_mb: Absolute ceiling in MB
            max_memory_fraction: Ceiling as a fraction of total memory
            usage: Returns (used_bytes, total_bytes); defaults to psutil
        """
        if max_memory_mb <= 0:
            raise ValueError(f"max_memory_mb must be positive, got {max_memory_mb}")
        if not 0 < max_memory_fraction <= 1:
            raise ValueError(f"max_memory_fraction must be in (0, 1], got {max_memory_fraction}")
        self.max_memory_mb = max_memory_mb
        self.max_memory_fraction = max_memory_fraction
        self._usage = usage or _psutil_usage

    def used_mb(self) -> float:
        return self._usage()[0] / MB

    def total_mb(self) -> float:
        return self._usage()[1] / MB

    def is_memory_low(self) -> bool:
        used, total = self._usage()
        used_mb = used / MB
        low = used_mb > self.max_memory_mb or used > self.max_memory_fraction * total
        if low:
            logger.warning(
                f"Memory low: {used_mb:.0f}MB used "
                f"(limit {self.max_memory_mb:.0f}MB, total {total / MB:.0f}MB)"
            )
        return low
