"""Bounded worker pool for per-tile tasks, scoped to one pipeline run."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence, TypeVar

from loguru import logger

T = TypeVar("T")
R = TypeVar("R")


class WorkerPool:
    """Run independent tasks sequentially or on a thread pool.

    ``max_workers == 1`` runs every task in the calling thread, in order.
    ``> 1`` uses a :class:`ThreadPoolExecutor`; tasks are network and file
    I/O bound.  Use as a context manager so the executor is shut down on
    every exit path::

        with WorkerPool(4) as pool:
            results = pool.run_pass(fn, items)
    """

    def __init__(self, max_workers: int = 1):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._closed = False

    def __enter__(self) -> "WorkerPool":
        if self.max_workers > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="dem-tile"
            )
            logger.info(f"Downloading tiles in parallel using {self.max_workers} workers")
        else:
            logger.info("Downloading tiles sequentially")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_sequential(self) -> bool:
        return self.max_workers <= 1

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None
        self._closed = True

    def run_pass(self, fn: Callable[[T], R], items: Sequence[T]) -> List[R]:
        """Call *fn* on every item and block until all of them finished.

        Results are returned in *items* order, whatever order the tasks
        completed in.
        """
        if self._closed:
            raise RuntimeError("WorkerPool is closed")
        if not items:
            return []

        if self._executor is None:
            if not self.is_sequential:
                raise RuntimeError("WorkerPool must be entered before use")
            return [fn(item) for item in items]

        results: List[Optional[R]] = [None] * len(items)
        futures = {self._executor.submit(fn, item): idx for idx, item in enumerate(items)}
        for fut in as_completed(futures):
            results[futures[fut]] = fut.result()
        return results  # type: ignore[return-value]
