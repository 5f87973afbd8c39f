"""Copernicus DEM tile acquisition: resolve, fetch with retries, mosaic, clip."""

__version__ = "0.1.0"
