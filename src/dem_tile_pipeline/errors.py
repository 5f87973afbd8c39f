"""Systemic pipeline failures.

Per-tile download/extract problems are not exceptions; they are reported
as :class:`~dem_tile_pipeline.tracking.tile_outcome.TileStatus` values and
handled by the retry coordinator.
"""

from __future__ import annotations


class DemPipelineError(Exception):
    """Base class for errors that abort a pipeline run."""


class ResolutionError(DemPipelineError):
    """No usable tiles for the AOI, or the grid/manifest is unavailable."""


class AoiSourceError(DemPipelineError):
    """A published AOI layer (e.g. sub-basins) could not be fetched or read."""


class MergeError(DemPipelineError):
    """No fragment survived the retries, or they could not be mosaicked."""


class WriteError(DemPipelineError):
    """The final raster could not be written."""
