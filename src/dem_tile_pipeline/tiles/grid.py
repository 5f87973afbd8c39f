"""Copernicus DEM grid index: download, read, and intersect with the AOI."""

from __future__ import annotations

import os
import zipfile
from typing import List

import geopandas as gpd
import requests
from loguru import logger

from dem_tile_pipeline.errors import ResolutionError
from dem_tile_pipeline.storage.http_utils import download_file, unzip_all
from dem_tile_pipeline.storage.tile_paths import GRID_ARCHIVE, grid_dir
from dem_tile_pipeline.tiles.aoi import aoi_union

CELL_ID_COLUMN = "GeoCellID"


def fetch_grid(grid_url: str, work_dir: str, timeout: float) -> gpd.GeoDataFrame:
    """Download and unzip the grid index archive, then read its shapefile."""
    dest_dir = grid_dir(work_dir)
    zip_path = os.path.join(dest_dir, GRID_ARCHIVE)

    logger.info("Downloading Copernicus DEM grid tiles")
    try:
        download_file(grid_url, zip_path, timeout)
    except (requests.RequestException, OSError) as e:
        raise ResolutionError(f"Error downloading Copernicus DEM grid: {e}") from e

    try:
        files = unzip_all(zip_path, dest_dir)
    except (zipfile.BadZipFile, OSError) as e:
        raise ResolutionError(f"Error unzipping Copernicus DEM grid: {e}") from e
    finally:
        try:
            os.remove(zip_path)
        except OSError:
            pass

    shapefiles = sorted(f for f in files if f.lower().endswith(".shp"))
    if not shapefiles:
        raise ResolutionError(f"No shapefile found in grid archive {grid_url}")
    return read_grid(shapefiles[0])


def read_grid(path: str) -> gpd.GeoDataFrame:
    try:
        grid = gpd.read_file(path)
    except Exception as e:
        raise ResolutionError(f"Error reading grid shapefile {path}: {e}") from e
    if CELL_ID_COLUMN not in grid.columns:
        raise ResolutionError(f"Grid layer {path} has no {CELL_ID_COLUMN!r} column")
    return grid


def intersecting_cells(grid: gpd.GeoDataFrame, aoi: gpd.GeoDataFrame) -> List[str]:
    """Return grid cell codes (e.g. ``N45E006``) of cells that intersect *aoi*.

    Codes come back de-duplicated, in grid row order.
    """
    if grid.crs is not None and aoi.crs is not None and aoi.crs != grid.crs:
        aoi = aoi.to_crs(grid.crs)
    geom = aoi_union(aoi)

    hits = grid[grid.intersects(geom)]

    codes = hits[CELL_ID_COLUMN].astype(str).str.strip().str.upper()
    cells = list(dict.fromkeys(codes))
    logger.info(f"AOI intersects {len(cells)} grid cell(s)")
    return cells
