"""
Worker pool for the traversal kernels.

Kernels release the GIL, so plain threads give real parallelism. Each
run() call is a barrier: it returns once every task has finished and
re-raises the first task error.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def default_threads() -> int:
    return max(1, min(32, os.cpu_count() or 1))


def hand_chunks(num_hands: int, num_chunks: int) -> List[Tuple[int, int]]:
    """Split [0, num_hands) into at most num_chunks contiguous ranges."""
    num_chunks = max(1, min(num_chunks, num_hands))
    bounds = np.linspace(0, num_hands, num_chunks + 1).astype(np.int64)
    return [(int(bounds[i]), int(bounds[i + 1])) for i in range(num_chunks)
            if bounds[i + 1] > bounds[i]]


def partition(items: np.ndarray, num_parts: int) -> List[np.ndarray]:
    """Split an index array into at most num_parts non-empty slices."""
    num_parts = max(1, min(num_parts, len(items)))
    return [part for part in np.array_split(items, num_parts) if len(part)]


class WorkerPool:
    """Thin wrapper over ThreadPoolExecutor with barrier semantics."""

    def __init__(self, num_threads: Optional[int] = None):
        self.num_threads = num_threads or default_threads()
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.num_threads > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self.num_threads, thread_name_prefix='postflop-cfr')
        logger.debug("Worker pool with %d threads", self.num_threads)

    def run(self, fn: Callable, tasks: Sequence[tuple]) -> None:
        """Call fn(*args) for every args tuple and wait for all of them."""
        if self._executor is None or len(tasks) <= 1:
            for args in tasks:
                fn(*args)
            return
        futures = [self._executor.submit(fn, *args) for args in tasks]
        wait(futures)
        for f in futures:
            f.result()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> 'WorkerPool':
        return self

    def __exit__(self, *exc) -> None:
        self.close()
