"""End-to-end run against local archives: resolve, fetch with retries, mosaic, write."""

import copy
import os
import time
from functools import partial

import numpy as np
import pytest
from shapely.geometry import box

from conftest import (
    LocalArchiveDownloader,
    archive_name_for,
    make_aoi,
    make_grid,
    make_tile_archive,
    tile_values,
    write_manifest,
)
from dem_tile_pipeline.config import PipelineConfig
from dem_tile_pipeline.errors import MergeError
from dem_tile_pipeline.exit_codes import ExitCode, exit_code_from_batch
from dem_tile_pipeline.fetch.tile_fetch import fetch_tile
from dem_tile_pipeline.mosaic.writer import TILES_SUBDIR, read_product
from dem_tile_pipeline.steps.download_dem import run_download_dem
from dem_tile_pipeline.tiles.manifest import parse_manifest
from dem_tile_pipeline.tiles import tile_lookup
from dem_tile_pipeline.tiles.tile_lookup import resolve_from_layers

CELLS = [(45, 6), (45, 7), (45, 8)]


@pytest.fixture
def remote(tmp_path):
    d = tmp_path / "remote"
    d.mkdir()
    for lat, lon in CELLS:
        make_tile_archive(str(d), lat, lon)
    return d


@pytest.fixture
def resolver(tmp_path):
    names = [archive_name_for(lat, lon) for lat, lon in CELLS]
    manifest = parse_manifest(write_manifest(str(tmp_path / "manifest.xml"), names), 90)
    grid = make_grid(CELLS)
    return lambda aoi, _work_dir: resolve_from_layers(aoi, grid, manifest)


@pytest.fixture
def cfg(tmp_path):
    cfg = PipelineConfig()
    cfg.download.temp_dir = str(tmp_path / "out" / "temp")
    cfg.download.max_workers = 3
    cfg.download.retries = 2
    cfg.download.timeout_sec = 5
    cfg.output.output_dir = str(tmp_path / "out")
    cfg.output.output_file_name = "dem.tif"
    return cfg


def _fetch_fn(cfg, downloader):
    return partial(
        fetch_tile,
        work_dir=cfg.download.temp_dir,
        timeout_sec=cfg.download.timeout_sec,
        downloader=downloader,
    )


def test_partial_failure_still_produces_a_dem(remote, resolver, cfg, log_messages):
    failing = archive_name_for(45, 7)
    downloader = LocalArchiveDownloader(str(remote), failing={failing})
    aoi = make_aoi(box(6.25, 45.25, 8.75, 45.75))

    run = run_download_dem(aoi, cfg, resolver=resolver, fetch_fn=_fetch_fn(cfg, downloader))

    assert os.path.exists(run.output_path)
    assert run.batch.failed_ids == [2]
    assert run.batch.still_failed_download == {2}
    assert downloader.calls.count(failing) == 1 + cfg.download.retries
    assert any("failed to download: 2" in m for m in log_messages)
    assert exit_code_from_batch(run.batch) is ExitCode.PARTIAL_FAILURE

    out = read_product(run.output_path)
    band = out.data[0]
    assert band.shape == (4, 20)
    np.testing.assert_array_equal(band[:, :6], tile_values(45, 6)[2:6, 2:8])
    assert (band[:, 6:14] == out.nodata).all()
    np.testing.assert_array_equal(band[:, 14:], tile_values(45, 8)[2:6, 0:6])

    assert not os.path.exists(cfg.download.temp_dir)


def test_full_success_keeps_individual_tiles(remote, resolver, cfg):
    cfg.output.keep_individual_tiles = True
    cfg.output.save_as_integer = True
    downloader = LocalArchiveDownloader(str(remote))
    aoi = make_aoi(box(6.25, 45.25, 7.75, 45.75))

    run = run_download_dem(aoi, cfg, resolver=resolver, fetch_fn=_fetch_fn(cfg, downloader))

    assert [d.grid_cell_code for d in run.descriptors] == ["N45E006", "N45E007"]
    assert exit_code_from_batch(run.batch) is ExitCode.SUCCESS
    kept = sorted(os.listdir(os.path.join(cfg.output.output_dir, TILES_SUBDIR)))
    assert len(kept) == 2
    assert read_product(run.output_path).profile["dtype"] == "int16"


def test_reports_are_written_when_requested(remote, resolver, cfg, tmp_path):
    downloader = LocalArchiveDownloader(str(remote))
    aoi = make_aoi(box(6.25, 45.25, 6.75, 45.75))
    report_dir = tmp_path / "reports"

    run_download_dem(
        aoi, cfg, resolver=resolver, fetch_fn=_fetch_fn(cfg, downloader), report_dir=str(report_dir)
    )

    names = os.listdir(report_dir)
    assert any(n.startswith("tile_report_") and n.endswith(".json") for n in names)
    assert any(n.startswith("tile_summary_") for n in names)
    assert not any(n.startswith("failed_tiles_") for n in names)


def test_nothing_downloaded_is_a_merge_error(remote, resolver, cfg):
    everything = {archive_name_for(lat, lon) for lat, lon in CELLS}
    downloader = LocalArchiveDownloader(str(remote), failing=everything)
    aoi = make_aoi(box(6.25, 45.25, 8.75, 45.75))

    with pytest.raises(MergeError):
        run_download_dem(aoi, cfg, resolver=resolver, fetch_fn=_fetch_fn(cfg, downloader))
    assert not os.path.exists(cfg.output.output_path)


def test_progress_reports_every_attempt(remote, resolver, cfg):
    downloader = LocalArchiveDownloader(str(remote), failing={archive_name_for(45, 8)})
    aoi = make_aoi(box(6.25, 45.25, 8.75, 45.75))
    seen, totals, resolved = [], [], []

    run_download_dem(
        aoi, cfg,
        resolver=resolver,
        fetch_fn=_fetch_fn(cfg, downloader),
        on_progress=seen.append,
        on_total=totals.append,
        on_resolved=resolved.extend,
    )

    assert len(resolved) == 3
    assert seen == list(range(1, 3 + cfg.download.retries + 1))
    assert totals == [3, 4, 5]


class _LaterTilesFirst(LocalArchiveDownloader):
    """Delay the first-resolved archives so concurrent fetches finish in reverse."""

    def __call__(self, url, dest, timeout):
        delays = {archive_name_for(45, 6): 0.3, archive_name_for(45, 7): 0.15}
        time.sleep(delays.get(url.rsplit("/", 1)[-1], 0.0))
        return super().__call__(url, dest, timeout)


def test_parallel_run_matches_sequential_run(remote, resolver, cfg, tmp_path):
    aoi = make_aoi(box(6.25, 45.25, 8.75, 45.75))
    seq_cfg = copy.deepcopy(cfg)
    seq_cfg.download.max_workers = 1
    seq_cfg.download.temp_dir = str(tmp_path / "seq" / "temp")
    seq_cfg.output.output_dir = str(tmp_path / "seq")

    par = run_download_dem(
        aoi, cfg, resolver=resolver, fetch_fn=_fetch_fn(cfg, _LaterTilesFirst(str(remote)))
    )
    seq = run_download_dem(
        aoi, seq_cfg, resolver=resolver, fetch_fn=_fetch_fn(seq_cfg, LocalArchiveDownloader(str(remote)))
    )

    np.testing.assert_array_equal(read_product(par.output_path).data, read_product(seq.output_path).data)


def test_remote_lookup_uses_the_configured_timeout(remote, cfg, tmp_path, monkeypatch):
    seen = {}
    manifest = write_manifest(
        str(tmp_path / "manifest.xml"), [archive_name_for(lat, lon) for lat, lon in CELLS]
    )

    def fake_grid(url, work_dir, timeout):
        seen["grid"] = timeout
        return make_grid(CELLS)

    def fake_manifest(url, work_dir, timeout):
        seen["manifest"] = timeout
        return manifest

    monkeypatch.setattr(tile_lookup, "fetch_grid", fake_grid)
    monkeypatch.setattr(tile_lookup, "fetch_manifest", fake_manifest)
    cfg.download.timeout_sec = 42

    run = run_download_dem(
        make_aoi(box(6.25, 45.25, 6.75, 45.75)), cfg,
        fetch_fn=_fetch_fn(cfg, LocalArchiveDownloader(str(remote))),
    )

    assert seen == {"grid": 42, "manifest": 42}
    assert [d.grid_cell_code for d in run.descriptors] == ["N45E006"]
