"""Tile resolution: AOI -> grid cells -> manifest entries -> descriptors."""

from dem_tile_pipeline.tiles.descriptor import TileDescriptor

__all__ = ["TileDescriptor"]
