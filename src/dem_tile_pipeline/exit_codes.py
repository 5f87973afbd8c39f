"""Structured exit codes for pipeline commands."""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dem_tile_pipeline.tracking import DownloadBatchResult


class ExitCode(IntEnum):
    SUCCESS = 0
    PARTIAL_FAILURE = 1  # product written, some tiles permanently failed
    TOTAL_FAILURE = 2
    BAD_INPUT = 3
    USER_ABORT = 5
    NO_WORK = 6  # AOI resolved to no downloadable tiles


def exit_code_from_batch(batch: DownloadBatchResult) -> ExitCode:
    """Derive an exit code from a finished download batch."""
    if not batch.outcomes:
        return ExitCode.NO_WORK
    if not batch.succeeded_ids:
        return ExitCode.TOTAL_FAILURE
    if batch.failed_ids:
        return ExitCode.PARTIAL_FAILURE
    return ExitCode.SUCCESS
