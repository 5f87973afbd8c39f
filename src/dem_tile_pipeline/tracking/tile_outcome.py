"""Per-tile outcomes and the aggregated result of a download batch."""

from __future__ import annotations

import os
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set

from dem_tile_pipeline.tiles.descriptor import TileDescriptor


class TileStatus(str, Enum):
    SUCCESS = "success"
    DOWNLOAD_FAILED = "download_failed"
    EXTRACT_FAILED = "extract_failed"


@dataclass
class TileOutcome:
    """Result of a single fetch attempt for one tile."""

    id: int
    status: TileStatus
    extracted_path: Optional[str] = None
    error_message: Optional[str] = None
    duration_sec: Optional[float] = None

    def __post_init__(self) -> None:
        if self.status is TileStatus.SUCCESS and not self.extracted_path:
            raise ValueError(f"Tile {self.id}: a successful outcome needs an extracted_path")

    @property
    def ok(self) -> bool:
        return self.status is TileStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


@dataclass
class DownloadBatchResult:
    """Latest outcome per tile id plus the ids that are still failing."""

    outcomes: Dict[int, TileOutcome] = field(default_factory=dict)
    still_failed_download: Set[int] = field(default_factory=set)
    still_failed_extract: Set[int] = field(default_factory=set)
    passes: int = 0

    @property
    def succeeded_ids(self) -> List[int]:
        return sorted(i for i, o in self.outcomes.items() if o.ok)

    @property
    def failed_ids(self) -> List[int]:
        return sorted(self.still_failed_download | self.still_failed_extract)

    @property
    def is_complete(self) -> bool:
        return not self.still_failed_download and not self.still_failed_extract

    def fragments(self, descriptors: Sequence[TileDescriptor]) -> List[str]:
        """Extracted raster paths of successful tiles, in *descriptors* order.

        Completion order of the concurrent fetches never leaks into this
        list, so the mosaic is reproducible.
        """
        paths = []
        for d in descriptors:
            outcome = self.outcomes.get(d.id)
            if outcome is not None and outcome.ok and os.path.exists(outcome.extracted_path):
                paths.append(outcome.extracted_path)
        return paths
