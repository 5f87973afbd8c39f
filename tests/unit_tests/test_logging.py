import json
import re
import sys

import pytest
from loguru import logger

from conftest import LocalArchiveDownloader, archive_name_for
from dem_tile_pipeline.fetch.tile_fetch import fetch_tile
from dem_tile_pipeline.logging import bind_run_context, new_run_id, setup_logging, tile_logger
from dem_tile_pipeline.tiles import TileDescriptor


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    logger.remove()
    logger.configure(extra={})
    logger.add(sys.stderr)


def _descriptor():
    name = archive_name_for(45, 6)
    return TileDescriptor(id=3, remote_url=f"https://example.test/{name}",
                          local_archive_name=name, grid_cell_code="N45E006")


def test_new_run_id_is_short_hex():
    assert re.fullmatch(r"[0-9a-f]{8}", new_run_id())


def test_run_log_records_tile_context(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    bind_run_context("abcd1234")
    setup_logging(level="WARNING", log_file=str(log_file))

    d = _descriptor()
    outcome = fetch_tile(
        d, str(tmp_path / "work"), 5,
        downloader=LocalArchiveDownloader(str(tmp_path), failing={d.local_archive_name}),
    )
    logger.info("batch done")
    logger.remove()

    lines = log_file.read_text().splitlines()
    tile_lines = [ln for ln in lines if "download failed" in ln]
    assert not outcome.ok
    assert len(tile_lines) == 1
    assert "abcd1234" in tile_lines[0]
    assert "tile 3:N45E006" in tile_lines[0]
    assert any("batch done" in ln and "tile -" in ln for ln in lines)


def test_json_records_carry_the_tile(capsys):
    bind_run_context("abcd1234")
    setup_logging(level="DEBUG", fmt="json")

    tile_logger(_descriptor()).warning("slow tile")
    logger.remove()

    record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])["record"]
    assert record["extra"] == {"run_id": "abcd1234", "tile": "3:N45E006"}
    assert record["message"] == "slow tile"


def test_setup_without_run_context_still_formats(tmp_path):
    log_file = tmp_path / "run.log"
    logger.configure(extra={})
    setup_logging(level="ERROR", log_file=str(log_file))

    logger.debug("no run bound")
    logger.remove()

    assert "no run bound" in log_file.read_text()
