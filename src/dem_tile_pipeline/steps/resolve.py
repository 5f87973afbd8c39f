"""Resolve step: write the tiles an AOI needs to a CSV, without downloading."""

from __future__ import annotations

from loguru import logger

from dem_tile_pipeline.config import PipelineConfig
from dem_tile_pipeline.mosaic.writer import purge_work_dir
from dem_tile_pipeline.tiles.aoi import load_aoi
from dem_tile_pipeline.tiles.csv_io import write_tiles_csv
from dem_tile_pipeline.tiles.tile_lookup import resolve_tiles


def run_resolve(aoi_path: str, cfg: PipelineConfig, output: str) -> int:
    """Resolve *aoi_path* into a tiles CSV.

    Returns the number of tiles written.
    """
    logger.info(f"Resolving tiles for {aoi_path} ({cfg.source.dataset_name})")
    aoi = load_aoi(aoi_path)
    work_dir = cfg.download.temp_dir
    try:
        descriptors = resolve_tiles(aoi, cfg.source, work_dir, timeout=cfg.download.timeout_sec)
    finally:
        purge_work_dir(work_dir)

    write_tiles_csv(output, descriptors)
    logger.info(f"Wrote {len(descriptors)} tiles to {output}")
    return len(descriptors)
