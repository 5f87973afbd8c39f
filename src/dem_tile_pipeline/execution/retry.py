"""Retry Coordinator: per-tile bounded retries with phase barriers.

The initial pass fetches every tile.  Each retry iteration then re-fetches
only the ids that are still failing, download failures and extract
failures as separate sub-passes.  A sub-pass finishes completely before
the failure sets are recomputed and the next sub-pass starts.  Successful
tiles are never revisited.
"""

from __future__ import annotations

import functools
import threading
import time
import traceback
from typing import Callable, Optional, Sequence

from loguru import logger

from dem_tile_pipeline.execution.local_executor import WorkerPool
from dem_tile_pipeline.fetch.tile_fetch import fetch_tile
from dem_tile_pipeline.logging import tile_logger
from dem_tile_pipeline.tiles.descriptor import TileDescriptor
from dem_tile_pipeline.tracking.tile_outcome import (
    DownloadBatchResult,
    TileOutcome,
    TileStatus,
)

FetchFn = Callable[[TileDescriptor], TileOutcome]


class ProgressCounter:
    """Thread-safe, monotonically increasing count of finished fetch attempts.

    *on_advance* is called with the new count after every increment, e.g.
    to drive a progress bar.  *on_total* is called whenever a pass is
    scheduled and the number of expected attempts grows.
    """

    def __init__(
        self,
        on_advance: Optional[Callable[[int], None]] = None,
        on_total: Optional[Callable[[int], None]] = None,
    ):
        self._lock = threading.Lock()
        self._completed = 0
        self._total = 0
        self._on_advance = on_advance
        self._on_total = on_total

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def total(self) -> int:
        return self._total

    def expect(self, n: int) -> int:
        with self._lock:
            self._total += n
            value = self._total
            if self._on_total is not None:
                self._on_total(value)
        return value

    def advance(self) -> int:
        with self._lock:
            self._completed += 1
            value = self._completed
            if self._on_advance is not None:
                self._on_advance(value)
        return value


class RetryCoordinator:
    """Drive a fetch function over a batch of tiles on a :class:`WorkerPool`."""

    def __init__(
        self,
        pool: WorkerPool,
        fetch_fn: FetchFn,
        progress: Optional[ProgressCounter] = None,
    ):
        self.pool = pool
        self.fetch_fn = fetch_fn
        self.progress = progress or ProgressCounter()

    def run(self, descriptors: Sequence[TileDescriptor], max_retries: int) -> DownloadBatchResult:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        by_id = {d.id: d for d in descriptors}
        if len(by_id) != len(descriptors):
            raise ValueError("Tile descriptor ids must be unique")

        result = DownloadBatchResult()
        if not descriptors:
            return result

        logger.info(f"Fetching {len(descriptors)} tiles")
        self._dispatch(descriptors, result)
        self._partition(result)

        for attempt in range(1, max_retries + 1):
            if result.is_complete:
                break
            # Snapshot both sets so a tile is dispatched at most once per iteration.
            download_ids = sorted(result.still_failed_download)
            extract_ids = sorted(result.still_failed_extract)

            if download_ids:
                logger.info(f"Retry {attempt}/{max_retries}: re-downloading tiles {download_ids}")
                self._dispatch([by_id[i] for i in download_ids], result)
                self._partition(result)
            if extract_ids:
                # Extraction failures redo the full fetch; the archive itself may be bad.
                logger.info(f"Retry {attempt}/{max_retries}: re-fetching tiles {extract_ids} after extract failure")
                self._dispatch([by_id[i] for i in extract_ids], result)
                self._partition(result)

        if not result.is_complete:
            logger.warning(
                f"{len(result.failed_ids)} of {len(descriptors)} tiles still failing "
                f"after {max_retries} retries: {result.failed_ids}"
            )
        return result

    # ------------------------------------------------------------------

    def _attempt(self, descriptor: TileDescriptor) -> TileOutcome:
        """Run one fetch; an unexpected exception counts as a download failure."""
        try:
            outcome = self.fetch_fn(descriptor)
        except Exception as exc:
            log = tile_logger(descriptor)
            log.error(f"Tile {descriptor.id} fetch raised {type(exc).__name__}: {exc}")
            log.debug(traceback.format_exc())
            outcome = TileOutcome(
                id=descriptor.id,
                status=TileStatus.DOWNLOAD_FAILED,
                error_message=str(exc),
            )
        if outcome.id != descriptor.id:
            raise ValueError(f"fetch_fn returned outcome for tile {outcome.id}, expected {descriptor.id}")
        self.progress.advance()
        return outcome

    def _dispatch(self, descriptors: Sequence[TileDescriptor], result: DownloadBatchResult) -> None:
        self.progress.expect(len(descriptors))
        outcomes = self.pool.run_pass(self._attempt, list(descriptors))
        for outcome in outcomes:
            result.outcomes[outcome.id] = outcome
        result.passes += 1

    @staticmethod
    def _partition(result: DownloadBatchResult) -> None:
        failed_download = set()
        failed_extract = set()
        for tile_id, outcome in result.outcomes.items():
            if outcome.status is TileStatus.SUCCESS:
                continue
            elif outcome.status is TileStatus.DOWNLOAD_FAILED:
                failed_download.add(tile_id)
            elif outcome.status is TileStatus.EXTRACT_FAILED:
                failed_extract.add(tile_id)
            else:
                raise AssertionError(f"Unhandled tile status: {outcome.status!r}")
        result.still_failed_download = failed_download
        result.still_failed_extract = failed_extract


def run_download_batch(
    descriptors: Sequence[TileDescriptor],
    work_dir: str,
    *,
    worker_count: int = 1,
    max_retries: int = 0,
    timeout_sec: float = 1000,
    fetch_fn: Optional[FetchFn] = None,
    on_progress: Optional[Callable[[int], None]] = None,
    on_total: Optional[Callable[[int], None]] = None,
) -> DownloadBatchResult:
    """Fetch *descriptors* into *work_dir* with a pool scoped to this call."""
    if fetch_fn is None:
        fetch_fn = functools.partial(fetch_tile, work_dir=work_dir, timeout_sec=timeout_sec)

    t0 = time.perf_counter()
    with WorkerPool(worker_count) as pool:
        coordinator = RetryCoordinator(pool, fetch_fn, ProgressCounter(on_progress, on_total))
        result = coordinator.run(descriptors, max_retries)
    logger.debug(
        f"Batch finished in {time.perf_counter() - t0:.1f}s over {result.passes} passes "
        f"({coordinator.progress.completed} fetch attempts)"
    )
    return result

