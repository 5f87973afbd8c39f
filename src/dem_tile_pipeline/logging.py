"""Loguru setup for pipeline runs: run id, per-tile context, optional run log file."""

from __future__ import annotations

import os
import sys
import uuid
from typing import Optional

from loguru import logger

NO_TILE = "-"

TEXT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "{extra[run_id]:>8} | {message}"
)
# The run log also names the tile each record belongs to.
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[run_id]} | "
    "{thread.name: <12} | tile {extra[tile]: <14} | {message}"
)


def _default_extra(record) -> None:
    record["extra"].setdefault("run_id", NO_TILE)
    record["extra"].setdefault("tile", NO_TILE)


def setup_logging(level: str = "INFO", fmt: str = "text", log_file: Optional[str] = None) -> None:
    """Configure loguru sinks.

    The console gets *level* in *fmt* (``text`` or ``json``).  With
    *log_file*, every record down to DEBUG is also written there,
    including the per-tile download/extract messages that the console
    usually hides.
    """
    logger.remove()
    logger.configure(patcher=_default_extra)
    if fmt == "json":
        logger.add(sys.stderr, level=level.upper(), serialize=True)
    else:
        logger.add(sys.stderr, level=level.upper(), format=TEXT_FORMAT)

    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        logger.add(log_file, level="DEBUG", format=FILE_FORMAT)


def new_run_id() -> str:
    """Generate an 8-char hex run identifier."""
    return uuid.uuid4().hex[:8]


def bind_run_context(run_id: str) -> None:
    """Set *run_id* as a default extra value for all subsequent log calls."""
    logger.configure(extra={"run_id": run_id, "tile": NO_TILE})


def tile_logger(descriptor):
    """Logger bound to one tile, e.g. ``tile=3:N45E006`` in the run log and JSON output."""
    return logger.bind(tile=f"{descriptor.id}:{descriptor.grid_cell_code}")
