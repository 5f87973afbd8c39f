"""Brazilian water-resources plan (PNRH) sub-basins, a ready-made AOI source.

Level 1 and level 2 sub-basin layers are published by SNIRH as zipped
shapefiles (``GEOFT_PNRH_SUB1.shp`` / ``GEOFT_PNRH_SUB2.shp``).
"""

from __future__ import annotations

import os
import zipfile
from typing import Callable

import geopandas as gpd
import requests
from loguru import logger

from dem_tile_pipeline.errors import AoiSourceError
from dem_tile_pipeline.storage.http_utils import download_file, unzip_all
from dem_tile_pipeline.tiles.aoi import normalize_aoi

SNIRH_RECORDS = "https://metadados.snirh.gov.br/geonetwork/srv/api/records"
SUBBASIN_LAYERS = {
    1: f"{SNIRH_RECORDS}/f50527b9-24ed-41d5-b063-b5acfb25e10d/attachments/GEOFT_PNRH_SUB1.zip",
    2: f"{SNIRH_RECORDS}/6141f37f-f15d-42e7-8495-ae9ddad0846f/attachments/GEOFT_PNRH_SUB2.zip",
}
SUBDIR = "subbasins"


def layer_name(level: int) -> str:
    return f"GEOFT_PNRH_SUB{level}"


def fetch_subbasins(
    level: int,
    work_dir: str,
    timeout: float,
    downloader: Callable[[str, str, float], str] = download_file,
) -> gpd.GeoDataFrame:
    """Download the sub-basin layer for *level* (1 or 2), in EPSG:4326.

    The zip is removed after extraction; the shapefile stays in
    ``<work_dir>/subbasins``.
    """
    if level not in SUBBASIN_LAYERS:
        raise ValueError(f"sub-basin level must be one of {sorted(SUBBASIN_LAYERS)}, got {level}")

    dest_dir = os.path.join(work_dir, SUBDIR)
    name = layer_name(level)
    zip_path = os.path.join(dest_dir, f"{name}.zip")

    logger.info(f"Downloading PNRH level {level} sub-basins")
    try:
        downloader(SUBBASIN_LAYERS[level], zip_path, timeout)
    except (requests.RequestException, OSError) as e:
        raise AoiSourceError(f"Error downloading sub-basins level {level}: {e}") from e

    try:
        files = unzip_all(zip_path, dest_dir)
    except (zipfile.BadZipFile, OSError) as e:
        raise AoiSourceError(f"Error unzipping sub-basins level {level}: {e}") from e
    finally:
        try:
            os.remove(zip_path)
        except OSError:
            pass

    shp = next((f for f in files if os.path.basename(f).lower() == f"{name.lower()}.shp"), None)
    if shp is None:
        raise AoiSourceError(f"{name}.shp not found in the sub-basin archive")
    try:
        layer = gpd.read_file(shp)
    except Exception as e:
        raise AoiSourceError(f"Error reading {shp}: {e}") from e

    layer = normalize_aoi(layer)
    logger.info(f"Loaded {len(layer)} level {level} sub-basin(s)")
    return layer
