"""Shared compute thread pool and recursive range bisection.

Every parallel numeric kernel (layer forward/backward, input normalization,
layer initialization, sample-level training and weight updates) goes through
``parallel_for``. The pool is process-wide, created once on first use and
never torn down mid-run.
"""

import os
import threading
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_pool: Optional[ThreadPoolExecutor] = None
_pool_size: Optional[int] = None
_pool_lock = threading.Lock()
_worker_state = threading.local()


def _mark_worker() -> None:
    _worker_state.in_pool = True


def in_pool_worker() -> bool:
    """Whether the calling thread belongs to the compute pool."""
    return getattr(_worker_state, "in_pool", False)


def configure_pool(max_workers: int) -> None:
    """Set the compute pool size before first use.

    Args:
        max_workers: Number of worker threads

    Raises:
        RuntimeError: If the pool has already been created
    """
    global _pool_size
    if max_workers < 1:
        raise ValueError(f"max_workers must be positive, got {max_workers}")
    with _pool_lock:
        if _pool is not None:
            raise RuntimeError("Compute pool already started; configure it before first use")
        _pool_size = max_workers


def get_pool() -> ThreadPoolExecutor:
    """Get the global compute pool, creating it on first call."""
    global _pool
    with _pool_lock:
        if _pool is None:
            workers = _pool_size or os.cpu_count() or 1
            _pool = ThreadPoolExecutor(
                max_workers=workers,
                thread_name_prefix="chessnet-compute",
                initializer=_mark_worker,
            )
            logger.debug(f"Started compute pool with {workers} threads")
        return _pool


def split_range(start: int, end: int, min_chunk: int) -> List[Tuple[int, int]]:
    """Bisect [start, end) recursively until every piece is at most min_chunk long.

    Returns:
        Pieces in ascending index order
    """
    if min_chunk < 1:
        raise ValueError(f"min_chunk must be positive, got {min_chunk}")
    if end - start <= min_chunk:
        return [(start, end)]
    mid = (start + end) // 2
    return split_range(start, mid, min_chunk) + split_range(mid, end, min_chunk)


def parallel_for(
    start: int,
    end: int,
    work_fn: Callable[[int, int], T],
    threshold: int,
    min_chunk: int,
    pool: Optional[ThreadPoolExecutor] = None,
) -> List[T]:
    """Run work_fn over [start, end), bisecting across the pool when large.

    Ranges no longer than ``threshold`` run on the calling thread as a single
    ``work_fn(start, end)`` call. So do calls made from inside a pool worker,
    since a worker blocking on its own subtasks can starve a bounded pool.

    Args:
        start: First index (inclusive)
        end: Last index (exclusive)
        work_fn: Callable taking (lo, hi) for one piece of the range
        threshold: Largest range length computed sequentially
        min_chunk: Chunk-size floor for the bisection
        pool: Executor to use (default: the global compute pool)

    Returns:
        Results of each work_fn call, in range order
    """
    if end <= start:
        return []

    if end - start <= threshold or in_pool_worker():
        return [work_fn(start, end)]

    pool = pool or get_pool()
    futures = [pool.submit(work_fn, lo, hi) for lo, hi in split_range(start, end, min_chunk)]
    try:
        return [future.result() for future in futures]
    finally:
        # No piece may still be running once anything propagates, interrupts included
        wait(futures)
