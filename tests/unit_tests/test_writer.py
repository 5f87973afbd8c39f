import os

import numpy as np
import pytest
from rasterio.transform import from_origin

from conftest import NODATA, RES, write_tile
from dem_tile_pipeline.errors import WriteError
from dem_tile_pipeline.mosaic import writer
from dem_tile_pipeline.mosaic.merge import FinalRaster
from dem_tile_pipeline.mosaic.writer import (
    INT16_NODATA,
    TILES_SUBDIR,
    purge_work_dir,
    quantize,
    read_product,
    retain_tiles,
    write_product,
)


def _raster(values, nodata=NODATA):
    data = np.asarray(values, dtype="float32")[np.newaxis, ...]
    profile = {
        "driver": "GTiff",
        "height": data.shape[1],
        "width": data.shape[2],
        "count": 1,
        "dtype": "float32",
        "crs": "EPSG:4326",
        "transform": from_origin(6.0, 46.0, RES, RES),
        "nodata": nodata,
    }
    return FinalRaster(data=data, profile=profile)


def test_float_product_round_trips(tmp_path):
    raster = _raster([[100.5, 200.25], [NODATA, 300.0]])
    path = write_product(raster, str(tmp_path / "out" / "dem.tif"))

    back = read_product(path)

    assert back.profile["dtype"] == "float32"
    assert back.nodata == NODATA
    assert back.profile["compress"].lower() == "lzw"
    np.testing.assert_array_equal(back.data, raster.data)


def test_existing_output_is_replaced(tmp_path):
    path = str(tmp_path / "dem.tif")
    write_product(_raster([[1.0, 2.0]]), path)
    write_product(_raster([[7.0, 8.0], [9.0, 10.0]]), path)

    back = read_product(path)

    assert back.data.shape == (1, 2, 2)
    assert back.data[0, 1, 1] == 10.0


@pytest.mark.parametrize("multiplier", [1.0, 10.0, 0.5])
def test_integer_product_is_within_half_a_unit(tmp_path, multiplier):
    values = np.array([[812.34, 1500.26], [NODATA, -12.7]], dtype="float32")
    path = write_product(
        _raster(values), str(tmp_path / "dem.tif"), save_as_integer=True, multiplier=multiplier
    )

    back = read_product(path)
    band = back.data[0]

    assert back.profile["dtype"] == "int16"
    assert back.nodata == INT16_NODATA
    assert band[1, 0] == INT16_NODATA
    valid = values != NODATA
    assert np.all(np.abs(band[valid] / multiplier - values[valid]) <= 0.5 / multiplier + 1e-3)


def test_quantize_leaves_nodata_unscaled():
    out = quantize(_raster([[NODATA, 3.4]]), multiplier=10.0)
    assert out.data.tolist() == [[[INT16_NODATA, 34]]]


def test_values_outside_int16_are_a_write_error(tmp_path):
    raster = _raster([[4000.0, 10.0]])
    with pytest.raises(WriteError):
        write_product(raster, str(tmp_path / "dem.tif"), save_as_integer=True, multiplier=10.0)
    assert not os.path.exists(tmp_path / "dem.tif")


def test_unwritable_destination_is_a_write_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    with pytest.raises(WriteError):
        write_product(_raster([[1.0]]), str(blocker / "dem.tif"))


def test_purge_removes_the_work_dir(tmp_path):
    work = tmp_path / "work"
    (work / "outputs").mkdir(parents=True)
    (work / "outputs" / "tile.tif").write_bytes(b"x")

    assert purge_work_dir(str(work)) is True
    assert not work.exists()


def test_purge_of_missing_dir_is_a_no_op(tmp_path):
    assert purge_work_dir(str(tmp_path / "nope")) is True


def test_purge_failure_is_only_a_warning(tmp_path, monkeypatch, log_messages):
    work = tmp_path / "work"
    work.mkdir()

    def refuse(path):
        raise PermissionError("locked")

    monkeypatch.setattr(writer.shutil, "rmtree", refuse)

    assert purge_work_dir(str(work)) is False
    assert any("Could not purge" in m for m in log_messages)


def test_retain_tiles_copies_fragments(tmp_path):
    fragments = [write_tile(str(tmp_path / "work" / f"t{lon}.tif"), 45, lon) for lon in (6, 7)]
    copied = retain_tiles(fragments + [str(tmp_path / "work" / "gone.tif")], str(tmp_path / "out"))

    assert [os.path.basename(p) for p in copied] == ["t6.tif", "t7.tif"]
    assert all(os.path.dirname(p) == str(tmp_path / "out" / TILES_SUBDIR) for p in copied)
