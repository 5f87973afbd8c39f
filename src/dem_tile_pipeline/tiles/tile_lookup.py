"""Tile resolution: AOI grid cells joined against the manifest via DuckDB."""

from __future__ import annotations

import os
from typing import List, Sequence

import duckdb
import geopandas as gpd
import pandas as pd
from loguru import logger

from dem_tile_pipeline.config import SourceConfig
from dem_tile_pipeline.errors import ResolutionError
from dem_tile_pipeline.tiles.descriptor import TileDescriptor
from dem_tile_pipeline.tiles.grid import fetch_grid, intersecting_cells
from dem_tile_pipeline.tiles.manifest import fetch_manifest, parse_manifest


def join_cells_to_manifest(cells: Sequence[str], manifest: pd.DataFrame) -> List[TileDescriptor]:
    """Inner-join grid cell codes with manifest rows.

    Output follows manifest order and is numbered 1..N.  Cells without a
    manifest entry (ocean, borders) simply produce no descriptor.
    """
    if not cells or manifest.empty:
        return []

    cells_df = pd.DataFrame({"grid_cell_code": list(cells)})
    con = duckdb.connect()
    try:
        con.register("cells", cells_df)
        con.register("manifest", manifest)
        joined = con.execute(
            """
            SELECT m.remote_url, m.local_archive_name, m.grid_cell_code
            FROM manifest m
            INNER JOIN (SELECT DISTINCT grid_cell_code FROM cells) c
            ON m.grid_cell_code = c.grid_cell_code
            ORDER BY m.ordinal
            """
        ).fetch_df()
    finally:
        con.close()

    joined = joined.drop_duplicates(subset=["local_archive_name"], keep="first")
    return [
        TileDescriptor(
            id=i,
            remote_url=row.remote_url,
            local_archive_name=row.local_archive_name,
            grid_cell_code=row.grid_cell_code,
        )
        for i, row in enumerate(joined.itertuples(index=False), start=1)
    ]


def resolve_from_layers(
    aoi: gpd.GeoDataFrame,
    grid: gpd.GeoDataFrame,
    manifest: pd.DataFrame,
) -> List[TileDescriptor]:
    """Resolve descriptors from an already loaded grid layer and manifest."""
    cells = intersecting_cells(grid, aoi)
    if not cells:
        raise ResolutionError("The AOI does not intersect any Copernicus DEM grid cell")

    descriptors = join_cells_to_manifest(cells, manifest)
    matched = {d.grid_cell_code for d in descriptors}
    unmatched = [c for c in cells if c not in matched]
    if unmatched:
        logger.debug(f"{len(unmatched)} grid cell(s) have no archive in the manifest: {unmatched}")
    if not descriptors:
        raise ResolutionError(
            f"None of the {len(cells)} intersecting grid cells has a downloadable archive"
        )
    logger.info(f"Resolved {len(descriptors)} tile(s) for the AOI")
    return descriptors


def resolve_tiles(
    aoi: gpd.GeoDataFrame,
    source: SourceConfig,
    work_dir: str,
    timeout: float,
) -> List[TileDescriptor]:
    """Map *aoi* to the ordered list of tiles to fetch.

    Deterministic for a fixed AOI and a fixed remote grid and manifest.
    *timeout* bounds each of the grid and manifest downloads.
    """
    os.makedirs(work_dir, exist_ok=True)
    grid = fetch_grid(source.grid_url, work_dir, timeout=timeout)
    logger.info("Identifying tiles at AOI")
    manifest = parse_manifest(
        fetch_manifest(source.manifest_url, work_dir, timeout=timeout),
        source.resolution,
    )
    return resolve_from_layers(aoi, grid, manifest)
