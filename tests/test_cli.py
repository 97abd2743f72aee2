#!/usr/bin/env python3

from __future__ import annotations

import sys
from pathlib import Path

import pandas as pd
import pytest

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from neonloc.geo.__main__ import main as geo_main
from neonloc.ingest.__main__ import main as ingest_main
from neonloc.registry.__main__ import main as registry_main

SOURCES = ROOT / "config" / "sources.yaml"


def _write_sites(path: Path) -> Path:
    path.write_text(
        "field_domain_id,field_site_id,field_site_name,field_site_type,field_latitude,field_longitude,field_mean_elevation_m\n"
        "D13,NIWO,Niwot Ridge,Gradient Terrestrial,40.05425,-105.58237,3490\n"
        "D13,COMO,Como Creek,Core Aquatic,40.03496,-105.54416,3021\n"
        "D05,TREE,Treehaven,Gradient Terrestrial,45.49369,-89.58571,467\n"
    )
    return path


def test_ingest_preset_dry_run(capsys):
    rc = ingest_main(["--sources-yaml", str(SOURCES), "--dry-run", "mammals", "--site", "HARV"])
    out = capsys.readouterr().out

    assert rc == 0
    assert "dpid: DP1.10072.001" in out
    assert "site: HARV" in out
    assert "startdate: 2019-07" in out
    assert str(Path("DP1.10072.001") / "HARV") in out


def test_ingest_soil_preset_carries_timeindex(capsys):
    rc = ingest_main(["--sources-yaml", str(SOURCES), "--dry-run", "soil-temp"])
    out = capsys.readouterr().out
    assert rc == 0
    assert "timeindex: 30" in out
    assert "tabl: ST_30_minute" in out
    assert "site: TREE" in out


def test_registry_list_sites_to_csv(tmp_path, capsys):
    sites = _write_sites(tmp_path / "sites.csv")
    out_csv = tmp_path / "out" / "terrestrial.csv"

    rc = registry_main([
        "--sources-yaml", str(SOURCES),
        "list-sites", "--sites-csv", str(sites), "--site-type", "terrestrial", "--out-csv", str(out_csv),
    ])

    assert rc == 0
    table = pd.read_csv(out_csv)
    assert list(table["siteID"]) == ["TREE", "NIWO"]

    with pytest.raises(SystemExit):
        registry_main(["--sources-yaml", str(SOURCES), "list-sites", "--sites-csv", str(sites), "--out-csv", str(out_csv)])


def test_registry_site_map_dry_run(tmp_path, capsys):
    rc = registry_main([
        "--sources-yaml", str(SOURCES), "--dry-run",
        "site-map", "--domains-shp", str(tmp_path / "NEON_Domains.shp"), "--bbox", "-110", "35", "-100", "45",
    ])
    out = capsys.readouterr().out
    assert rc == 0
    assert "NEON_Domains.shp" in out
    assert "(interactive window)" in out


def test_geo_refine_dry_run_skips_api(tmp_path, capsys):
    rc = geo_main([
        "--sources-yaml", str(SOURCES), "--dry-run",
        "refine-tos", "--table-csv", str(tmp_path / "mam_pertrapnight.csv"),
    ])
    out = capsys.readouterr().out
    assert rc == 0
    assert "https://data.neonscience.org/api/v0" in out
    assert "mam_pertrapnight" in out


def test_geo_sensor_profile_from_csvs(tmp_path, capsys):
    readings = tmp_path / "ST_30_minute.csv"
    readings.write_text(
        "siteID,horizontalPosition,verticalPosition,startDateTime,soilTempMean\n"
        "TREE,001,501,2018-07-15T00:00:00Z,16.0\n"
        "TREE,001,501,2018-07-15T00:30:00Z,\n"
        "TREE,001,502,2018-07-15T00:00:00Z,12.0\n"
        "TREE,001,502,2018-07-15T00:30:00Z,13.0\n"
        "TREE,002,501,2018-07-15T00:00:00Z,30.0\n"
    )
    positions = tmp_path / "sensor_positions.csv"
    positions.write_text(
        "siteID,HOR.VER,positionStartDateTime,positionEndDateTime,xOffset,yOffset,zOffset\n"
        "TREE,001.501,2016-01-01T00:00:00Z,,0.5,1.0,-0.02\n"
        "TREE,001.502,2016-01-01T00:00:00Z,,0.5,1.0,-0.06\n"
        "TREE,002.501,2016-01-01T00:00:00Z,,3.0,1.0,-0.02\n"
    )
    out_csv = tmp_path / "profile.csv"

    rc = geo_main([
        "--sources-yaml", str(SOURCES),
        "sensor-profile", "--readings-csv", str(readings), "--positions-csv", str(positions),
        "--hor", "001", "--out-csv", str(out_csv),
    ])

    assert rc == 0
    prof = pd.read_csv(out_csv)
    assert list(prof.columns) == ["zOffset", "soilTempMean", "n"]
    assert list(prof["zOffset"]) == [-0.02, -0.06]
    assert list(prof["soilTempMean"]) == [16.0, 12.5]
    assert list(prof["n"]) == [1, 2]


def test_geo_sensor_profile_needs_inputs():
    with pytest.raises(SystemExit):
        geo_main(["--sources-yaml", str(SOURCES), "sensor-profile", "--readings-csv", "x.csv"])


GRID = "NIWO_004.mammalGrid.mam"


class StubLocationClient:
    """Stands in for LocationClient; knows trap A1 and the grid itself."""

    instances = []

    def __init__(self, base_url=None, token=None, **kwargs):
        from neonloc.geo.locations import Location

        self.closed = False
        self.locations = {
            f"{GRID}.A1": Location(f"{GRID}.A1", 40.05, -105.58, 3490.0, 450850.0, 4434000.0, 13, "N", 0.5, 0.2),
            GRID: Location(GRID, 40.05, -105.58, 3490.0, 450895.0, 4433955.0, 13, "N", 2.0, 0.2),
        }
        StubLocationClient.instances.append(self)

    def get(self, name):
        return self.locations.get(name)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True


def _write_traps(path: Path) -> Path:
    path.write_text(
        "namedLocation,plotID,trapCoordinate,trapStatus\n"
        f"{GRID},NIWO_004,A1,5 - capture\n"
        f"{GRID},NIWO_004,X,5 - capture\n"
        f"{GRID},NIWO_004,A1,4 - more than 1 capture in one trap\n"
        f"{GRID},NIWO_004,B2,6 - trap set and empty\n"
    )
    return path


def test_geo_refine_tos_writes_refined_csv(tmp_path, monkeypatch):
    from neonloc.geo import locations

    StubLocationClient.instances.clear()
    monkeypatch.setattr(locations, "LocationClient", StubLocationClient)
    traps = _write_traps(tmp_path / "mam_pertrapnight.csv")
    out_csv = tmp_path / "refined.csv"

    rc = geo_main([
        "--sources-yaml", str(SOURCES),
        "refine-tos", "--table-csv", str(traps), "--out-csv", str(out_csv),
    ])

    assert rc == 0
    refined = pd.read_csv(out_csv)
    assert list(refined["adjEasting"]) == [450850.0, 450895.0, 450850.0, 450895.0]
    assert list(refined["adjCoordinateUncertainty"]) == [0.5, 47.0, 0.5, 47.0]
    assert list(refined["adjUtmZone"]) == ["13N"] * 4
    assert StubLocationClient.instances[0].closed

    # refusing to clobber without --overwrite
    with pytest.raises(SystemExit):
        geo_main(["--sources-yaml", str(SOURCES), "refine-tos", "--table-csv", str(traps), "--out-csv", str(out_csv)])


def test_geo_captures_reuses_refined_table(tmp_path, monkeypatch, capsys):
    from neonloc.geo import locations

    StubLocationClient.instances.clear()
    monkeypatch.setattr(locations, "LocationClient", StubLocationClient)
    traps = _write_traps(tmp_path / "mam_pertrapnight.csv")
    refined_csv = tmp_path / "refined.csv"
    geo_main(["--sources-yaml", str(SOURCES), "refine-tos", "--table-csv", str(traps), "--out-csv", str(refined_csv)])
    assert len(StubLocationClient.instances) == 1

    out_csv = tmp_path / "per_trap.csv"
    rc = geo_main([
        "--sources-yaml", str(SOURCES),
        "captures", "--table-csv", str(refined_csv), "--out-csv", str(out_csv),
    ])

    assert rc == 0
    # already refined: no second API client
    assert len(StubLocationClient.instances) == 1
    assert "already refined" in capsys.readouterr().out
    per_trap = pd.read_csv(out_csv, dtype={"trapCoordinate": str})
    assert list(per_trap["trapCoordinate"]) == ["A1", "X"]
    assert list(per_trap["nCaptures"]) == [2, 1]
    assert per_trap.loc[0, "adjEasting"] == 450850.0


def test_geo_sensor_coords_writes_csv(tmp_path, capsys):
    positions = tmp_path / "sensor_positions_00041.csv"
    positions.write_text(
        "HOR.VER,xOffset,yOffset,zOffset,referenceLatitude,referenceLongitude,referenceElevation\n"
        "001.501,0.0,0.0,-0.02,40.0,-105.0,3000.0\n"
        "001.502,0.0,0.0,-0.06,40.0,-105.0,3000.0\n"
    )
    out_csv = tmp_path / "coords.csv"

    rc = geo_main(["--sources-yaml", str(SOURCES), "sensor-coords", "--stacked-dir", str(tmp_path), "--out-csv", str(out_csv)])

    assert rc == 0
    assert "001.502" in capsys.readouterr().out
    coords = pd.read_csv(out_csv, dtype={"HOR.VER": str})
    assert list(coords["HOR.VER"]) == ["001.501", "001.502"]
    assert list(coords["sensorElevation"]) == pytest.approx([2999.98, 2999.94])
    assert list(coords["sensorLatitude"]) == pytest.approx([40.0, 40.0], abs=1e-7)
