"""Tile Fetch Unit: download one archive, extract its DEM raster.

Only the tile's own archive and extraction paths are touched, so any
number of these can run concurrently without coordination.
"""

from __future__ import annotations

import os
import tarfile
import time
from typing import Callable

import requests
from loguru import logger

from dem_tile_pipeline.logging import tile_logger
from dem_tile_pipeline.storage.http_utils import download_file, extract_member
from dem_tile_pipeline.storage.tile_paths import archive_member, archive_path, extracted_path
from dem_tile_pipeline.tiles.descriptor import TileDescriptor
from dem_tile_pipeline.tracking.tile_outcome import TileOutcome, TileStatus

Downloader = Callable[[str, str, float], str]
Extractor = Callable[[str, str, str], str]

DOWNLOAD_ERRORS = (requests.RequestException, OSError)
EXTRACT_ERRORS = (tarfile.TarError, KeyError, EOFError, OSError)


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")


def fetch_tile(
    descriptor: TileDescriptor,
    work_dir: str,
    timeout_sec: float,
    downloader: Downloader = download_file,
    extractor: Extractor = extract_member,
) -> TileOutcome:
    """Fetch a single tile and report a tri-state :class:`TileOutcome`."""
    t0 = time.perf_counter()
    log = tile_logger(descriptor)
    archive = archive_path(work_dir, descriptor.local_archive_name)
    target = extracted_path(work_dir, descriptor.local_archive_name)

    try:
        downloader(descriptor.remote_url, archive, timeout_sec)
    except DOWNLOAD_ERRORS as e:
        log.debug(f"Tile {descriptor.id} ({descriptor.grid_cell_code}) download failed: {e}")
        _remove_quietly(archive)
        return TileOutcome(
            id=descriptor.id,
            status=TileStatus.DOWNLOAD_FAILED,
            error_message=str(e),
            duration_sec=time.perf_counter() - t0,
        )

    try:
        extractor(archive, archive_member(descriptor.local_archive_name), target)
    except EXTRACT_ERRORS as e:
        log.debug(f"Tile {descriptor.id} ({descriptor.grid_cell_code}) extract failed: {e}")
        _remove_quietly(archive)
        return TileOutcome(
            id=descriptor.id,
            status=TileStatus.EXTRACT_FAILED,
            error_message=str(e) or type(e).__name__,
            duration_sec=time.perf_counter() - t0,
        )

    _remove_quietly(archive)
    duration = time.perf_counter() - t0
    log.debug(f"Tile {descriptor.id} ({descriptor.grid_cell_code}) fetched in {duration:.1f}s")
    return TileOutcome(
        id=descriptor.id,
        status=TileStatus.SUCCESS,
        extracted_path=target,
        duration_sec=duration,
    )
