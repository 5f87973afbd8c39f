"""Download step: AOI -> tiles -> fetch with retries -> mosaic -> GeoTIFF."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

import geopandas as gpd
from loguru import logger

from dem_tile_pipeline.config import PipelineConfig, validate_config
from dem_tile_pipeline.execution.retry import FetchFn, run_download_batch
from dem_tile_pipeline.mosaic.merge import FinalRaster, merge_fragments
from dem_tile_pipeline.mosaic.writer import (
    TILES_SUBDIR,
    plot_raster,
    purge_work_dir,
    retain_tiles,
    write_product,
)
from dem_tile_pipeline.tiles.aoi import load_aoi, normalize_aoi
from dem_tile_pipeline.tiles.descriptor import TileDescriptor
from dem_tile_pipeline.tiles.tile_lookup import resolve_tiles
from dem_tile_pipeline.tracking import DownloadBatchResult, JobTracker

Resolver = Callable[[gpd.GeoDataFrame, str], List[TileDescriptor]]


@dataclass
class DemRun:
    """Everything a caller may want back from :func:`run_download_dem`."""

    raster: FinalRaster
    output_path: str
    descriptors: List[TileDescriptor]
    batch: DownloadBatchResult


def _prepare_dirs(cfg: PipelineConfig) -> None:
    purge_work_dir(cfg.download.temp_dir)
    os.makedirs(cfg.download.temp_dir, exist_ok=True)
    os.makedirs(cfg.output.output_dir, exist_ok=True)
    # Tiles kept by an earlier run would otherwise mix with this run's.
    purge_work_dir(os.path.join(cfg.output.output_dir, TILES_SUBDIR))


def run_download_dem(
    aoi: Union[str, gpd.GeoDataFrame],
    cfg: PipelineConfig,
    *,
    report_dir: Optional[str] = None,
    on_progress: Optional[Callable[[int], None]] = None,
    on_total: Optional[Callable[[int], None]] = None,
    on_resolved: Optional[Callable[[List[TileDescriptor]], None]] = None,
    resolver: Optional[Resolver] = None,
    fetch_fn: Optional[FetchFn] = None,
) -> DemRun:
    """Build the DEM for *aoi* and write it to ``output_dir/output_file_name``.

    1. Load the AOI and normalise it to EPSG:4326
    2. Resolve the intersecting tiles (grid index + manifest)
    3. Download/extract every tile, retrying failures per tile
    4. Merge the surviving tiles, crop and mask to the AOI
    5. Write the GeoTIFF and purge the working directory

    Tiles that still fail after the retries are reported as warnings; the
    run only aborts when nothing can be produced (``ResolutionError``,
    ``MergeError``, ``WriteError``).

    *on_progress* receives the number of finished fetch attempts and
    *on_total* the number of attempts scheduled so far; the latter grows
    with every retry pass.

    *resolver* and *fetch_fn* replace the remote grid/manifest lookup and
    the HTTP tile fetch, mainly for tests.
    """
    validate_config(cfg)
    _prepare_dirs(cfg)
    work_dir = cfg.download.temp_dir

    aoi = load_aoi(aoi) if isinstance(aoi, str) else normalize_aoi(aoi)

    if resolver is None:
        descriptors = resolve_tiles(aoi, cfg.source, work_dir, timeout=cfg.download.timeout_sec)
    else:
        descriptors = resolver(aoi, work_dir)
    if on_resolved is not None:
        on_resolved(descriptors)

    t0 = time.perf_counter()
    batch = run_download_batch(
        descriptors,
        work_dir,
        worker_count=cfg.download.max_workers,
        max_retries=cfg.download.retries,
        timeout_sec=cfg.download.timeout_sec,
        fetch_fn=fetch_fn,
        on_progress=on_progress,
        on_total=on_total,
    )
    tracker = JobTracker(descriptors, batch, duration_sec=time.perf_counter() - t0)
    tracker.print_summary()
    if report_dir:
        tracker.save_reports(report_dir)

    fragments = batch.fragments(descriptors)
    if cfg.output.keep_individual_tiles:
        retain_tiles(fragments, cfg.output.output_dir)

    raster = merge_fragments(fragments, aoi)
    output_path = write_product(
        raster,
        cfg.output.output_path,
        save_as_integer=cfg.output.save_as_integer,
        multiplier=cfg.output.multiplier,
    )
    purge_work_dir(work_dir)

    if cfg.output.show_raster:
        plot_raster(raster)

    logger.info("Job complete")
    return DemRun(raster=raster, output_path=output_path, descriptors=descriptors, batch=batch)
