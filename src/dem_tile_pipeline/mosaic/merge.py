"""Mosaic extracted DEM fragments and clip the result to the AOI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

import geopandas as gpd
import numpy as np
import rasterio
from loguru import logger
from rasterio.errors import RasterioError
from rasterio.io import MemoryFile
from rasterio.mask import mask as rio_mask
from rasterio.merge import merge as rio_merge
from rasterio.transform import array_bounds
from shapely.geometry import mapping

from dem_tile_pipeline.errors import MergeError

DEFAULT_NODATA = -32767.0


@dataclass
class FinalRaster:
    """In-memory raster: ``data`` is ``(bands, rows, cols)``, ``profile`` a rasterio profile."""

    data: np.ndarray
    profile: Dict[str, Any]

    @property
    def nodata(self):
        return self.profile.get("nodata")

    @property
    def transform(self):
        return self.profile["transform"]

    @property
    def crs(self):
        return self.profile.get("crs")

    @property
    def bounds(self):
        return array_bounds(self.data.shape[1], self.data.shape[2], self.transform)

    def valid_mask(self) -> np.ndarray:
        """True where the cell holds data (not nodata, not NaN)."""
        valid = np.ones(self.data.shape, dtype=bool)
        if np.issubdtype(self.data.dtype, np.floating):
            valid &= np.isfinite(self.data)
        if self.nodata is not None:
            valid &= self.data != self.nodata
        return valid


def _mosaic(paths: Sequence[str]) -> FinalRaster:
    datasets = [rasterio.open(p) for p in paths]
    try:
        crs_set = {str(ds.crs) for ds in datasets}
        if len(crs_set) > 1:
            raise MergeError(f"CRS mismatch in tiles: {crs_set}")

        first = datasets[0]
        nodata = first.nodata if first.nodata is not None else DEFAULT_NODATA
        if len(datasets) == 1:
            data = first.read()
            if first.nodata is None:
                data = np.where(first.read_masks() == 0, nodata, data).astype(data.dtype)
            transform = first.transform
        else:
            # "first": where tiles overlap, the earlier tile in *paths* wins.
            data, transform = rio_merge(datasets, method="first", nodata=nodata)

        profile = {
            "driver": "GTiff",
            "height": data.shape[1],
            "width": data.shape[2],
            "count": data.shape[0],
            "dtype": data.dtype.name,
            "crs": first.crs,
            "transform": transform,
            "nodata": nodata,
        }
        return FinalRaster(data=data, profile=profile)
    finally:
        for ds in datasets:
            ds.close()


def clip_to_aoi(raster: FinalRaster, aoi: gpd.GeoDataFrame) -> FinalRaster:
    """Crop *raster* to the AOI bounding box and set cells outside the AOI to nodata."""
    if raster.crs is not None and aoi.crs is not None and aoi.crs != raster.crs:
        aoi = aoi.to_crs(raster.crs)
    shapes = [mapping(g) for g in aoi.geometry if g is not None and not g.is_empty]

    with MemoryFile() as memfile:
        with memfile.open(**raster.profile) as ds:
            ds.write(raster.data)
        with memfile.open() as ds:
            data, transform = rio_mask(ds, shapes, crop=True, nodata=raster.nodata, filled=True)

    profile = dict(raster.profile)
    profile.update(height=data.shape[1], width=data.shape[2], transform=transform)
    return FinalRaster(data=data, profile=profile)


def merge_fragments(fragments: List[str], aoi: gpd.GeoDataFrame) -> FinalRaster:
    """Merge *fragments* (in resolution order) and clip to *aoi*.

    Raises :class:`MergeError` when there is nothing to merge or rasterio
    cannot mosaic/mask the fragments.
    """
    if not fragments:
        raise MergeError("No tiles were downloaded successfully; nothing to merge")

    logger.info(f"Merging {len(fragments)} tile(s)")
    try:
        merged = _mosaic(fragments)
    except (RasterioError, OSError, ValueError) as e:
        raise MergeError(f"Error merging tiles: {e}") from e

    try:
        final = clip_to_aoi(merged, aoi)
    except (RasterioError, ValueError) as e:
        raise MergeError(f"Error cropping and masking DEM: {e}") from e

    logger.info(f"Mosaic clipped to AOI: {final.data.shape[2]}x{final.data.shape[1]} cells")
    return final
