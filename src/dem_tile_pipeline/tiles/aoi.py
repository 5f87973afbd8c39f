"""Area-of-interest loading and normalisation to geographic WGS84."""

from __future__ import annotations

import geopandas as gpd
from loguru import logger
from shapely.ops import unary_union

WGS84 = "EPSG:4326"


def normalize_aoi(aoi: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Return *aoi* in EPSG:4326 with empty geometries dropped.

    A layer without a CRS is assumed to already be lat/long.
    """
    aoi = aoi[~(aoi.geometry.is_empty | aoi.geometry.isna())]
    if aoi.empty:
        raise ValueError("AOI contains no geometries")
    if aoi.crs is None:
        logger.warning("AOI has no CRS; assuming EPSG:4326")
        return aoi.set_crs(WGS84)
    if aoi.crs.to_epsg() != 4326:
        logger.debug(f"Reprojecting AOI from {aoi.crs} to {WGS84}")
        return aoi.to_crs(WGS84)
    return aoi


def load_aoi(path: str) -> gpd.GeoDataFrame:
    """Load polygon geometries from GeoJSON/GeoPackage/Shapefile."""
    try:
        gdf = gpd.read_file(path)
    except Exception as e:
        raise ValueError(f"Cannot read AOI from {path}: {e}") from e
    aoi = normalize_aoi(gdf)
    logger.info(f"AOI loaded: {len(aoi)} feature(s), bounds={tuple(round(b, 4) for b in aoi.total_bounds)}")
    return aoi


def aoi_union(aoi: gpd.GeoDataFrame):
    """Dissolve all AOI features into one shapely geometry."""
    return unary_union(list(aoi.geometry))
