"""The unit of work handed from the resolver to the fetch/retry engine."""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict


@dataclass(frozen=True)
class TileDescriptor:
    """One downloadable DEM archive.

    ``id`` is the stable ordinal assigned at resolution time (1-based, in
    manifest order).  It is the only key used to address a tile after
    resolution; URLs and archive names are payload.
    """

    id: int
    remote_url: str
    local_archive_name: str  # e.g. Copernicus_DSM_30_N45_00_E006_00.tar
    grid_cell_code: str  # e.g. N45E006

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
