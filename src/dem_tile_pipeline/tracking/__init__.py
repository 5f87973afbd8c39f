"""Tile outcome types and batch reporting."""

from dem_tile_pipeline.tracking.job_tracker import JobTracker
from dem_tile_pipeline.tracking.tile_outcome import (
    DownloadBatchResult,
    TileOutcome,
    TileStatus,
)

__all__ = [
    "DownloadBatchResult",
    "JobTracker",
    "TileOutcome",
    "TileStatus",
]
