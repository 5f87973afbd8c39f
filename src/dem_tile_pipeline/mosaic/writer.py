"""Product Writer: serialise the final DEM, then clean up the working directory."""

from __future__ import annotations

import os
import shutil
from typing import List, Sequence

import numpy as np
import rasterio
from loguru import logger
from rasterio.errors import RasterioError

from dem_tile_pipeline.errors import WriteError
from dem_tile_pipeline.mosaic.merge import FinalRaster

INT16_NODATA = -32768
INT16_MIN = -32767  # -32768 is reserved for nodata
INT16_MAX = 32767
TILES_SUBDIR = "tilesCopernicusDem"


def quantize(raster: FinalRaster, multiplier: float = 1.0) -> FinalRaster:
    """Scale by *multiplier* and round to the nearest integer as int16.

    Nodata cells become ``-32768``.  Values that don't fit int16 after
    scaling raise :class:`WriteError`.
    """
    valid = raster.valid_mask()
    scaled = np.rint(raster.data.astype("float64") * multiplier)

    if valid.any():
        lo, hi = scaled[valid].min(), scaled[valid].max()
        if lo < INT16_MIN or hi > INT16_MAX:
            raise WriteError(
                f"Values scaled by {multiplier} span [{lo:.0f}, {hi:.0f}], outside the int16 range"
            )

    out = np.full(scaled.shape, INT16_NODATA, dtype="int16")
    out[valid] = scaled[valid].astype("int16")

    profile = dict(raster.profile)
    profile.update(dtype="int16", nodata=INT16_NODATA)
    return FinalRaster(data=out, profile=profile)


def write_product(
    raster: FinalRaster,
    path: str,
    save_as_integer: bool = False,
    multiplier: float = 1.0,
) -> str:
    """Write *raster* as a GeoTIFF at *path*, replacing any existing file."""
    if save_as_integer:
        raster = quantize(raster, multiplier)

    profile = dict(raster.profile)
    profile.update(driver="GTiff", compress="lzw")
    try:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        if os.path.exists(path):
            os.remove(path)
        with rasterio.open(path, "w", **profile) as dst:
            dst.write(raster.data)
    except (RasterioError, OSError, ValueError) as e:
        raise WriteError(f"Error writing final DEM to {path}: {e}") from e

    logger.info(f"DEM written to {path} ({profile['dtype']}, {raster.data.shape[2]}x{raster.data.shape[1]})")
    return path


def read_product(path: str) -> FinalRaster:
    """Load a raster written by :func:`write_product`."""
    with rasterio.open(path) as src:
        return FinalRaster(data=src.read(), profile=src.profile.copy())


def retain_tiles(fragments: Sequence[str], output_dir: str) -> List[str]:
    """Copy the individual tile rasters to ``<output_dir>/tilesCopernicusDem``.

    Copy failures are logged, never raised.
    """
    dest_dir = os.path.join(output_dir, TILES_SUBDIR)
    copied = []
    try:
        os.makedirs(dest_dir, exist_ok=True)
    except OSError as e:
        logger.warning(f"Error copying individual tiles: {e}")
        return copied
    for src in fragments:
        dest = os.path.join(dest_dir, os.path.basename(src))
        try:
            shutil.copy2(src, dest)
            copied.append(dest)
        except OSError as e:
            logger.warning(f"Error copying individual tile {src}: {e}")
    logger.info(f"Kept {len(copied)} individual tile(s) in {dest_dir}")
    return copied


def purge_work_dir(work_dir: str) -> bool:
    """Delete the working directory (archives, fragments, grid, manifest).

    Returns False and logs a warning if anything could not be removed.
    """
    if not os.path.exists(work_dir):
        return True
    try:
        shutil.rmtree(work_dir)
    except OSError as e:
        logger.warning(f"Could not purge working directory {work_dir}: {e}")
        return False
    logger.debug(f"Purged working directory {work_dir}")
    return True


def plot_raster(raster: FinalRaster, title: str = "Copernicus DEM") -> None:
    """Show the first band with matplotlib; failures are only logged."""
    try:
        import matplotlib.pyplot as plt

        band = np.ma.masked_array(raster.data[0], mask=~raster.valid_mask()[0])
        left, bottom, right, top = raster.bounds
        fig, ax = plt.subplots(figsize=(8, 8))
        im = ax.imshow(band, cmap="terrain", extent=(left, right, bottom, top))
        fig.colorbar(im, ax=ax, label="Elevation")
        ax.set_title(title)
        plt.show()
    except Exception as e:
        logger.warning(f"Error plotting final DEM: {e}")
