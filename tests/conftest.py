"""Shared fixtures: synthetic DEM tiles, tile archives, grid layers, AOIs."""

from __future__ import annotations

import os
import shutil
import tarfile

import geopandas as gpd
import numpy as np
import pytest
import rasterio
import requests
from loguru import logger
from rasterio.transform import from_origin
from shapely.geometry import box

from dem_tile_pipeline.storage.tile_paths import archive_member

RES = 0.125  # 8x8 cells per 1-degree tile; exact in binary
NODATA = -32767.0
DATASET_URL = "https://prism-dem-open.copernicus.eu/pd-desk-open-access/prismDownload/COP-DEM_GLO-90-DGED__2023_1"


def archive_name_for(lat: int, lon: int, arcsec: str = "30") -> str:
    return f"Copernicus_DSM_{arcsec}_N{lat:02d}_00_E{lon:03d}_00.tar"


def cell_code_for(lat: int, lon: int) -> str:
    return f"N{lat:02d}E{lon:03d}"


def tile_values(lat: int, lon: int) -> np.ndarray:
    """Distinct, predictable elevations per tile."""
    n = int(1 / RES)
    base = lon * 1000 + lat
    return (base + np.arange(n * n, dtype="float32").reshape(n, n) * 0.37).astype("float32")


def write_tile(path: str, lat: int, lon: int, values: np.ndarray | None = None) -> str:
    values = tile_values(lat, lon) if values is None else values
    profile = {
        "driver": "GTiff",
        "height": values.shape[0],
        "width": values.shape[1],
        "count": 1,
        "dtype": "float32",
        "crs": "EPSG:4326",
        "transform": from_origin(lon, lat + 1, RES, RES),
        "nodata": NODATA,
    }
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(values.astype("float32"), 1)
    return path


def make_tile_archive(directory: str, lat: int, lon: int, member: str | None = None) -> str:
    """Build a Copernicus-style tar holding ``<base>/DEM/<base>_DEM.tif``."""
    name = archive_name_for(lat, lon)
    staging = os.path.join(directory, "_staging")
    tif = write_tile(os.path.join(staging, name + ".tif"), lat, lon)
    tar_path = os.path.join(directory, name)
    with tarfile.open(tar_path, "w") as tar:
        tar.add(tif, arcname=member or archive_member(name))
    os.remove(tif)
    return tar_path


def make_grid(cells) -> gpd.GeoDataFrame:
    """Grid layer with one 1-degree box per ``(lat, lon)``."""
    return gpd.GeoDataFrame(
        {"GeoCellID": [cell_code_for(lat, lon) for lat, lon in cells]},
        geometry=[box(lon, lat, lon + 1, lat + 1) for lat, lon in cells],
        crs="EPSG:4326",
    )


def make_aoi(geom) -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame({"name": ["aoi"]}, geometry=[geom], crs="EPSG:4326")


def write_manifest(path: str, archive_names) -> str:
    lines = ["<?xml version=\"1.0\" encoding=\"UTF-8\"?>", "<files>"]
    for name in archive_names:
        lines.append(f"  <file>{DATASET_URL}/{name}</file>")
    lines.append("</files>")
    with open(path, "w") as f:
        f.write("\n".join(lines))
    return path


class LocalArchiveDownloader:
    """Stand-in for the HTTP download: copy archives from a local directory.

    Archive names in *failing* always raise ``ConnectionError``.
    """

    def __init__(self, archive_dir: str, failing=()):
        self.archive_dir = archive_dir
        self.failing = set(failing)
        self.calls = []

    def __call__(self, url: str, dest: str, timeout: float) -> str:
        name = url.rsplit("/", 1)[-1]
        self.calls.append(name)
        if name in self.failing:
            raise requests.ConnectionError(f"simulated outage for {name}")
        os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
        shutil.copy(os.path.join(self.archive_dir, name), dest)
        return dest


@pytest.fixture
def log_messages():
    """Capture loguru messages emitted during a test."""
    messages = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
