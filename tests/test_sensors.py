#!/usr/bin/env python3

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from neonloc.geo import sensors as sn


def test_normalize_position():
    assert sn.normalize_position("001") == "001"
    assert sn.normalize_position(1) == "001"
    assert sn.normalize_position(1.0) == "001"
    assert sn.normalize_position(" 501 ") == "501"
    assert sn.normalize_position("1.0") == "001"
    assert sn.normalize_position(None) == ""
    assert sn.normalize_position(np.nan) == ""
    with pytest.raises(ValueError):
        sn.normalize_position("abc")
    with pytest.raises(ValueError):
        sn.normalize_position(1.5)


def test_normalize_hor_ver_restores_zeros():
    assert sn.normalize_hor_ver("001.501") == "001.501"
    assert sn.normalize_hor_ver(1.501) == "001.501"
    assert sn.normalize_hor_ver("1.501") == "001.501"
    # numeric readers drop trailing zeros of the VER part too
    assert sn.normalize_hor_ver(1.01) == "001.010"
    assert sn.normalize_hor_ver("1.01") == "001.010"
    assert sn.normalize_hor_ver(3) == "003.000"
    assert sn.normalize_hor_ver(None) == ""
    with pytest.raises(ValueError):
        sn.normalize_hor_ver("001.5011")
    with pytest.raises(ValueError):
        sn.normalize_hor_ver("HOR.VER")


def test_hor_ver_key_prefers_separate_columns():
    df = pd.DataFrame({"horizontalPosition": [1, "002"], "verticalPosition": ["501", 502]})
    assert list(sn.hor_ver_key(df)) == ["001.501", "002.502"]
    with pytest.raises(ValueError):
        sn.hor_ver_key(pd.DataFrame({"x": [1]}))


def _positions():
    return pd.DataFrame({
        "siteID": ["TREE"] * 4,
        "HOR.VER": [1.501, 1.501, "001.502", 2.501],
        "positionStartDateTime": ["2016-01-01T00:00:00Z", "2018-07-10T00:00:00Z", "2016-01-01T00:00:00Z", "2016-01-01T00:00:00Z"],
        "positionEndDateTime": ["2018-07-10T00:00:00Z", np.nan, np.nan, np.nan],
        "xOffset": [0.5, 0.6, 0.5, 10.0],
        "yOffset": [1.0, 1.0, 1.0, 10.0],
        "zOffset": [-0.02, -0.03, -0.06, -0.02],
        "referenceLatitude": [45.49] * 4,
        "referenceLongitude": [-89.58] * 4,
        "referenceElevation": [467.0] * 4,
    })


def _readings():
    return pd.DataFrame({
        "siteID": ["TREE"] * 6,
        "horizontalPosition": ["001", "001", "001", "001", "001", "003"],
        "verticalPosition": ["501", "501", "501", "502", "502", "501"],
        "startDateTime": [
            "2018-07-05T00:00:00Z",
            "2018-07-15T00:00:00Z",
            "2018-07-15T00:30:00Z",
            "2018-07-15T00:00:00Z",
            "2018-07-15T00:30:00Z",
            "2018-07-15T00:00:00Z",
        ],
        "soilTempMean": [14.0, 16.0, np.nan, 12.0, 13.0, 20.0],
    })


def test_join_positions_uses_position_in_effect():
    joined = sn.join_positions(_readings(), _positions())

    # HOR 003 has no position
    assert len(joined) == 5
    assert list(joined["horVer"]) == ["001.501", "001.501", "001.501", "001.502", "001.502"]
    # moved sensor: before and after 2018-07-10
    assert list(joined["zOffset"][:3]) == [-0.02, -0.03, -0.03]
    assert joined["soilTempMean"].iloc[0] == 14.0


def test_join_positions_without_windows():
    positions = _positions().drop(columns=["positionStartDateTime", "positionEndDateTime"]).iloc[[0, 2]]
    joined = sn.join_positions(_readings(), positions)
    assert len(joined) == 5
    assert set(joined["zOffset"]) == {-0.02, -0.06}


def test_vertical_profile_means_ignore_missing():
    joined = sn.join_positions(_readings(), _positions())
    prof = sn.vertical_profile(
        joined, "soilTempMean", hor="1", start="2018-07-15", end="2018-07-16",
    )

    assert list(prof.columns) == ["zOffset", "soilTempMean", "n"]
    # shallow first
    assert list(prof["zOffset"]) == [-0.03, -0.06]
    assert prof.loc[0, "soilTempMean"] == pytest.approx(16.0)
    assert prof.loc[0, "n"] == 1
    assert prof.loc[1, "soilTempMean"] == pytest.approx(12.5)
    assert prof.loc[1, "n"] == 2


def test_vertical_profile_empty_selection():
    joined = sn.join_positions(_readings(), _positions())
    with pytest.raises(ValueError):
        sn.vertical_profile(joined, "soilTempMean", start="2020-01-01")
    with pytest.raises(ValueError):
        sn.vertical_profile(joined, "soilMoisture")


def test_sensor_coordinates_applies_offsets():
    positions = pd.DataFrame({
        "HOR.VER": ["001.501", "002.501"],
        "xOffset": [0.0, 0.0],
        "yOffset": [0.0, 100.0],
        "zOffset": [-0.5, 2.0],
        "referenceLatitude": [40.0, 40.0],
        "referenceLongitude": [-105.0, -105.0],
        "referenceElevation": [3000.0, 3000.0],
    })

    out = sn.sensor_coordinates(positions)

    assert out.loc[0, "sensorLatitude"] == pytest.approx(40.0, abs=1e-7)
    assert out.loc[0, "sensorLongitude"] == pytest.approx(-105.0, abs=1e-7)
    assert out.loc[1, "sensorLatitude"] == pytest.approx(40.0 + 100 / 111_000, abs=2e-5)
    assert out.loc[1, "sensorLongitude"] == pytest.approx(-105.0, abs=1e-5)
    assert list(out["sensorElevation"]) == [2999.5, 3002.0]


def test_sensor_coordinates_needs_reference():
    with pytest.raises(ValueError):
        sn.sensor_coordinates(pd.DataFrame({"HOR.VER": ["001.501"], "xOffset": [0], "yOffset": [0]}))


def test_join_positions_one_position_per_reading(capsys):
    readings = pd.DataFrame({"horizontalPosition": ["001"], "verticalPosition": ["501"], "soilTempMean": [15.0]})
    positions = pd.DataFrame({"HOR.VER": ["001.501", "001.501"], "zOffset": [-0.02, -0.03]})

    joined = sn.join_positions(readings, positions)

    assert len(joined) == 1
    assert joined.loc[0, "zOffset"] == -0.03
    assert "joined 1 of 1 readings" in capsys.readouterr().out


def test_join_positions_latest_start_without_end_column():
    readings = pd.DataFrame({
        "horizontalPosition": ["001"], "verticalPosition": ["501"],
        "startDateTime": ["2018-07-15T00:00:00Z"], "soilTempMean": [15.0],
    })
    positions = pd.DataFrame({
        "HOR.VER": ["001.501", "001.501"],
        "positionStartDateTime": ["2018-07-10T00:00:00Z", "2016-01-01T00:00:00Z"],
        "zOffset": [-0.03, -0.02],
    })
    joined = sn.join_positions(readings, positions)
    assert list(joined["zOffset"]) == [-0.03]


def test_sensor_coordinates_handles_repeated_index_labels():
    a = pd.DataFrame({
        "HOR.VER": ["001.501"], "xOffset": [0.0], "yOffset": [0.0], "zOffset": [-0.5],
        "referenceLatitude": [40.0], "referenceLongitude": [-105.0], "referenceElevation": [3000.0],
    })
    b = a.assign(**{"HOR.VER": ["002.501"], "yOffset": [100.0]})
    out = sn.sensor_coordinates(pd.concat([a, b]))

    assert list(out.index) == [0, 0]
    lat = list(out["sensorLatitude"])
    assert lat[0] == pytest.approx(40.0, abs=1e-7)
    assert lat[1] == pytest.approx(40.0 + 100 / 111_000, abs=2e-5)
