"""Remote manifest of downloadable DEM archives.

The manifest is an XML listing of archive URLs such as::

    https://prism-dem-open.copernicus.eu/pd-desk-open-access/prismDownload/
        COP-DEM_GLO-90-DGED__2023_1/Copernicus_DSM_30_N45_00_E006_00.tar
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import List
from urllib.parse import urlparse

import pandas as pd
import requests
from loguru import logger

from dem_tile_pipeline.errors import ResolutionError
from dem_tile_pipeline.storage.http_utils import download_file
from dem_tile_pipeline.storage.tile_paths import manifest_path

MANIFEST_COLUMNS = ["ordinal", "remote_url", "local_archive_name", "grid_cell_code"]

ARCHIVE_RE = re.compile(
    r"^Copernicus_DSM_(?P<arcsec>\d{2})_(?P<lat>[NS]\d{2})_\d{2}_(?P<lon>[EW]\d{3})_\d{2}\.tar$"
)

# Archive names carry the pixel spacing in tenths of an arc second:
# GLO-30 -> "10", GLO-90 -> "30".
ARCSEC_CODE = {30: "10", 90: "30"}


def fetch_manifest(manifest_url: str, work_dir: str, timeout: float) -> str:
    """Download the manifest XML to the working directory."""
    logger.info("Listing 'http' files to download")
    dest = manifest_path(work_dir)
    try:
        return download_file(manifest_url, dest, timeout)
    except (requests.RequestException, OSError) as e:
        raise ResolutionError(f"Error downloading tile manifest {manifest_url}: {e}") from e


def _manifest_urls(root: ET.Element) -> List[str]:
    urls = []
    for el in root.iter():
        text = (el.text or "").strip()
        if text.startswith(("http://", "https://")):
            urls.append(text)
    return urls


def parse_manifest(path: str, resolution: int) -> pd.DataFrame:
    """Parse the manifest XML into a table, one row per archive.

    Columns: ``ordinal`` (1-based manifest order), ``remote_url``,
    ``local_archive_name``, ``grid_cell_code``.  Entries for another
    resolution, or with names that don't follow the archive naming
    scheme, are skipped.
    """
    try:
        root = ET.parse(path).getroot()
    except (ET.ParseError, OSError) as e:
        raise ResolutionError(f"Error parsing manifest XML {path}: {e}") from e

    arcsec = ARCSEC_CODE.get(resolution)
    rows = []
    skipped = 0
    for url in _manifest_urls(root):
        name = urlparse(url).path.rsplit("/", 1)[-1]
        m = ARCHIVE_RE.match(name)
        if m is None or (arcsec is not None and m.group("arcsec") != arcsec):
            skipped += 1
            continue
        rows.append({
            "ordinal": len(rows) + 1,
            "remote_url": url,
            "local_archive_name": name,
            "grid_cell_code": f"{m.group('lat')}{m.group('lon')}",
        })

    if skipped:
        logger.debug(f"Skipped {skipped} manifest entries not matching the {resolution} m archive scheme")
    if not rows:
        raise ResolutionError(f"Manifest {path} could not be converted to a table of archives")

    df = pd.DataFrame(rows, columns=MANIFEST_COLUMNS)
    logger.debug(f"Manifest lists {len(df)} archives")
    return df
