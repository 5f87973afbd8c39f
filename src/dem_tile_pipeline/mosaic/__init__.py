"""Mosaic, clip and write the final DEM."""

from dem_tile_pipeline.mosaic.merge import FinalRaster, merge_fragments
from dem_tile_pipeline.mosaic.writer import purge_work_dir, write_product

__all__ = ["FinalRaster", "merge_fragments", "purge_work_dir", "write_product"]
