"""Worker pool and the per-tile retry engine."""

from dem_tile_pipeline.execution.local_executor import WorkerPool
from dem_tile_pipeline.execution.retry import ProgressCounter, RetryCoordinator, run_download_batch

__all__ = ["ProgressCounter", "RetryCoordinator", "WorkerPool", "run_download_batch"]
