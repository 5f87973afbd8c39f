"""Read / write resolved tiles as CSV."""

from __future__ import annotations

import csv
import os
from typing import List, Sequence

from dem_tile_pipeline.tiles.descriptor import TileDescriptor

FIELDNAMES = ["id", "grid_cell_code", "local_archive_name", "remote_url"]
REQUIRED_COLUMNS = set(FIELDNAMES)


def read_tiles_csv(path: str) -> List[TileDescriptor]:
    """Read a tiles CSV written by :func:`write_tiles_csv`."""
    tiles: List[TileDescriptor] = []
    with open(path, newline="") as f:
        reader = csv.DictReader(f)
        missing = REQUIRED_COLUMNS - set(reader.fieldnames or [])
        if missing:
            raise ValueError(f"CSV is missing columns: {sorted(missing)}")
        for row in reader:
            tiles.append(TileDescriptor(
                id=int(row["id"]),
                remote_url=row["remote_url"],
                local_archive_name=row["local_archive_name"],
                grid_cell_code=row["grid_cell_code"],
            ))
    return tiles


def write_tiles_csv(path: str, tiles: Sequence[TileDescriptor]) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)
    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=FIELDNAMES)
        writer.writeheader()
        for t in tiles:
            writer.writerow({k: getattr(t, k) for k in FIELDNAMES})
