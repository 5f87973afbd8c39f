"""Path builders for the working directory.

Every tile gets its own archive path and extraction path derived from its
archive name, so concurrent workers never write to the same file.
"""

from __future__ import annotations

import os

ARCHIVE_SUFFIX = ".tar"
EXTRACT_SUBDIR = "outputs"
GRID_SUBDIR = "grid"
GRID_ARCHIVE = "copDemGrid.zip"
MANIFEST_FILE = "manifest.xml"


def archive_base_name(archive_name: str) -> str:
    """``Copernicus_DSM_30_N45_00_E006_00.tar`` -> ``Copernicus_DSM_30_N45_00_E006_00``."""
    if archive_name.endswith(ARCHIVE_SUFFIX):
        return archive_name[: -len(ARCHIVE_SUFFIX)]
    return archive_name


def archive_member(archive_name: str) -> str:
    """Return the DEM raster member path inside a tile archive."""
    base = archive_base_name(archive_name)
    return f"{base}/DEM/{base}_DEM.tif"


def archive_path(work_dir: str, archive_name: str) -> str:
    return os.path.join(work_dir, archive_name)


def extract_dir(work_dir: str) -> str:
    return os.path.join(work_dir, EXTRACT_SUBDIR)


def extracted_path(work_dir: str, archive_name: str) -> str:
    """Local path of the extracted DEM raster for *archive_name*."""
    return os.path.join(extract_dir(work_dir), *archive_member(archive_name).split("/"))


def grid_dir(work_dir: str) -> str:
    return os.path.join(work_dir, GRID_SUBDIR)


def manifest_path(work_dir: str) -> str:
    return os.path.join(work_dir, MANIFEST_FILE)
