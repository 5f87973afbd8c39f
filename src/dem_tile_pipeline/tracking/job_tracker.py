"""Batch reporting: console summary plus JSON / CSV / text report files."""

from __future__ import annotations

import csv
import json
import os
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from dem_tile_pipeline.tiles.descriptor import TileDescriptor
from dem_tile_pipeline.tracking.tile_outcome import DownloadBatchResult, TileStatus


class JobTracker:
    """Summarise a finished :class:`DownloadBatchResult` and persist reports."""

    def __init__(
        self,
        descriptors: Sequence[TileDescriptor],
        batch: DownloadBatchResult,
        duration_sec: Optional[float] = None,
    ):
        self.descriptors = list(descriptors)
        self.batch = batch
        self.duration_sec = duration_sec
        self.start_time = datetime.now()

    def rows(self) -> List[Dict[str, Any]]:
        """One row per tile, in resolution order."""
        out = []
        for d in self.descriptors:
            row = d.to_dict()
            row.update(status=None, extracted_path=None, error_message=None, duration_sec=None)
            o = self.batch.outcomes.get(d.id)
            if o is not None:
                row.update(o.to_dict())
            out.append(row)
        return out

    # ------------------------------------------------------------------
    # Console
    # ------------------------------------------------------------------

    def print_summary(self) -> None:
        """Log the success count and enumerate permanently failed tiles."""
        total = len(self.descriptors)
        if total == 0:
            logger.info("No tiles were processed.")
            return

        succeeded = len(self.batch.succeeded_ids)
        elapsed = ""
        if self.duration_sec is not None:
            elapsed = f" in {self.duration_sec / 60:.2f} minutes"
        logger.info(f"Downloaded {succeeded} out of {total} tiles{elapsed}")

        if self.batch.still_failed_download:
            ids = ", ".join(str(i) for i in sorted(self.batch.still_failed_download))
            logger.warning(f"Some tiles failed to download: {ids}")
        if self.batch.still_failed_extract:
            ids = ", ".join(str(i) for i in sorted(self.batch.still_failed_extract))
            logger.warning(f"Some tiles failed to extract: {ids}")

    # ------------------------------------------------------------------
    # Report files
    # ------------------------------------------------------------------

    def save_reports(self, output_dir: str) -> None:
        """Save JSON, CSV, text, and failed-tiles reports to *output_dir*."""
        os.makedirs(output_dir, exist_ok=True)
        timestamp = self.start_time.strftime("%Y%m%d_%H%M%S")
        rows = self.rows()

        json_path = os.path.join(output_dir, f"tile_report_{timestamp}.json")
        with open(json_path, "w") as f:
            json.dump(rows, f, indent=2, default=str)

        csv_path = os.path.join(output_dir, f"tile_summary_{timestamp}.csv")
        self._save_csv_summary(csv_path, rows)

        txt_path = os.path.join(output_dir, f"tile_report_{timestamp}.txt")
        self._save_text_report(txt_path, rows)

        failed = [r for r in rows if r["status"] != TileStatus.SUCCESS.value]
        if failed:
            failed_path = os.path.join(output_dir, f"failed_tiles_{timestamp}.json")
            with open(failed_path, "w") as f:
                json.dump(failed, f, indent=2, default=str)

        logger.info(f"Reports saved to {output_dir}/")

    def _save_csv_summary(self, path: str, rows: List[Dict[str, Any]]) -> None:
        fieldnames = [
            "id", "grid_cell_code", "local_archive_name", "status",
            "duration_sec", "error_message",
        ]
        with open(path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
            writer.writeheader()
            for r in rows:
                writer.writerow({
                    **r,
                    "error_message": r["error_message"][:100] if r["error_message"] else None,
                })

    def _save_text_report(self, path: str, rows: List[Dict[str, Any]]) -> None:
        total = len(rows)
        if total == 0:
            with open(path, "w") as f:
                f.write("No tiles were processed.\n")
            return

        counts = {s.value: 0 for s in TileStatus}
        for r in rows:
            if r["status"] in counts:
                counts[r["status"]] += 1

        with open(path, "w") as f:
            f.write("=" * 60 + "\n")
            f.write("DEM TILE DOWNLOAD REPORT\n")
            f.write(f"Generated: {datetime.now():%Y-%m-%d %H:%M:%S}\n")
            f.write("=" * 60 + "\n\n")

            f.write("OVERALL SUMMARY\n")
            f.write("-" * 40 + "\n")
            f.write(f"Total Tiles:       {total}\n")
            f.write(f"Passes:            {self.batch.passes}\n")
            for status, cnt in counts.items():
                f.write(f"{status + ':':<18} {cnt} ({cnt / total * 100:.1f}%)\n")
            if self.duration_sec is not None:
                f.write(f"\nDuration:   {self.duration_sec:.2f} sec\n")

            failed = [r for r in rows if r["status"] != TileStatus.SUCCESS.value]
            if failed:
                f.write("\nFAILED TILES DETAIL\n")
                f.write("-" * 40 + "\n")
                for r in failed[:20]:
                    f.write(f"\nTile {r['id']} ({r['grid_cell_code']})\n")
                    f.write(f"  Status: {r['status']}\n")
                    f.write(f"  URL: {r['remote_url']}\n")
                    f.write(f"  Error: {r['error_message'][:200] if r['error_message'] else 'Unknown'}\n")
                if len(failed) > 20:
                    f.write(f"\n... and {len(failed) - 20} more failed tiles\n")
