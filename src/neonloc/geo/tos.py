#!/usr/bin/env python3
"""tos.py

Refine the coordinates of terrestrial observational sampling (TOS) records.

TOS tables ship with plot-level coordinates (decimalLatitude/Longitude of the
plot centroid), but every record also names where it was taken inside the
plot: a trap on a mammal grid, a point on a bird grid, a stem mapped from a
reference point. refine_tos() resolves those finer locations against the
NEON locations endpoint and appends the adj* columns:

    adjDecimalLatitude, adjDecimalLongitude, adjCoordinateUncertainty,
    adjElevation, adjElevationUncertainty, adjEasting, adjNorthing, adjUtmZone

Per table:
- mam_pertrapnight: "<namedLocation>.<trapCoordinate>" (A1..J10). Traps off
  the grid (X, blank) get the plot location with +45 m uncertainty.
- brd_perpoint / brd_countdata: "<namedLocation>.<pointID>".
- vst_mappingandtagging: the point location, shifted stemDistance metres
  along stemAzimuth.
- anything else with namedLocation: the plot location.

Unresolvable rows keep NaN in the adj* columns.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

import geopandas as gpd
import numpy as np
import pandas as pd

from neonloc.geo.locations import Location, utm_epsg


ADJ_COLUMNS = [
    "adjDecimalLatitude",
    "adjDecimalLongitude",
    "adjCoordinateUncertainty",
    "adjElevation",
    "adjElevationUncertainty",
    "adjEasting",
    "adjNorthing",
    "adjUtmZone",
]

MAMMAL_TABLE = "mam_pertrapnight"
BIRD_TABLES = ("brd_perpoint", "brd_countdata")
STEM_TABLE = "vst_mappingandtagging"

# 10 x 10 grid, rows A-J, columns 1-10, 10 m spacing
TRAP_COORDINATE_RE = re.compile(r"^[A-J](10|[1-9])$")
MAMMAL_GRID_HALF_WIDTH_M = 45.0

REQUIRED_COLUMNS: Dict[str, List[str]] = {
    MAMMAL_TABLE: ["namedLocation", "trapCoordinate"],
    "brd_perpoint": ["namedLocation", "pointID"],
    "brd_countdata": ["namedLocation", "pointID"],
    STEM_TABLE: ["namedLocation", "pointID", "stemDistance", "stemAzimuth"],
}


# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------

def _clean(s: pd.Series) -> pd.Series:
    return s.fillna("").astype(str).str.strip()


def _zone_label(loc: Location) -> Optional[str]:
    if loc.utm_zone is None:
        return None
    return f"{loc.utm_zone}{'S' if loc.hemisphere.upper().startswith('S') else 'N'}"


def _epsg_from_label(label: str) -> int:
    m = re.match(r"^(\d+)([NS]?)$", str(label).strip().upper())
    if not m:
        raise ValueError(f"Bad UTM zone label: {label!r}")
    return utm_epsg(int(m.group(1)), m.group(2) or "N")


def _fill(
    out: pd.DataFrame,
    idx,
    loc: Location,
    extra_uncertainty: float = 0.0,
) -> None:
    unc = loc.coordinate_uncertainty
    out.loc[idx, "adjDecimalLatitude"] = loc.latitude
    out.loc[idx, "adjDecimalLongitude"] = loc.longitude
    out.loc[idx, "adjCoordinateUncertainty"] = (unc + extra_uncertainty) if unc is not None else np.nan
    out.loc[idx, "adjElevation"] = loc.elevation
    out.loc[idx, "adjElevationUncertainty"] = loc.elevation_uncertainty
    out.loc[idx, "adjEasting"] = loc.easting
    out.loc[idx, "adjNorthing"] = loc.northing
    out.loc[idx, "adjUtmZone"] = _zone_label(loc)


def _resolve(
    out: pd.DataFrame,
    client,
    suffix: Optional[pd.Series],
    *,
    plot_fallback_uncertainty: Optional[float],
) -> Dict[str, int]:
    """Fill adj* columns from "<namedLocation>.<suffix>", else the plot.

    Rows with a usable suffix are looked up at point level. Rows without one
    (or whose point isn't known to the API) fall back to the plot location
    when plot_fallback_uncertainty is not None.
    """
    named = _clean(out["namedLocation"])
    counts = {"point": 0, "plot": 0, "unresolved": 0}

    keys = pd.DataFrame({"named": named, "suffix": suffix if suffix is not None else ""})
    for (plot_name, sfx), grp in keys.groupby(["named", "suffix"], sort=False):
        idx = grp.index
        loc = client.get(f"{plot_name}.{sfx}") if (plot_name and sfx) else None
        if loc is not None:
            _fill(out, idx, loc)
            counts["point"] += len(idx)
            continue

        plot_loc = client.get(plot_name) if (plot_name and plot_fallback_uncertainty is not None) else None
        if plot_loc is not None:
            _fill(out, idx, plot_loc, extra_uncertainty=plot_fallback_uncertainty or 0.0)
            counts["plot"] += len(idx)
        else:
            counts["unresolved"] += len(idx)
    return counts


def utm_to_lonlat(easting, northing, zone_label: str):
    """Convert UTM coordinates in one zone ("13N") to (lon, lat) arrays."""
    pts = gpd.GeoSeries(
        gpd.points_from_xy(easting, northing),
        crs=f"EPSG:{_epsg_from_label(zone_label)}",
    ).to_crs("EPSG:4326")
    return pts.x.to_numpy(), pts.y.to_numpy()


def _apply_stem_offsets(out: pd.DataFrame) -> int:
    """Shift point locations by stemDistance (m) along stemAzimuth (deg)."""
    dist = pd.to_numeric(out["stemDistance"], errors="coerce")
    az = pd.to_numeric(out["stemAzimuth"], errors="coerce")
    ok = dist.notna() & az.notna() & out["adjEasting"].notna() & out["adjUtmZone"].notna()
    if not ok.any():
        return 0

    rad = np.radians(az[ok].astype(float))
    out.loc[ok, "adjEasting"] = out.loc[ok, "adjEasting"].astype(float) + dist[ok] * np.sin(rad)
    out.loc[ok, "adjNorthing"] = out.loc[ok, "adjNorthing"].astype(float) + dist[ok] * np.cos(rad)

    for zone_label, grp in out[ok].groupby("adjUtmZone"):
        lon, lat = utm_to_lonlat(grp["adjEasting"].astype(float), grp["adjNorthing"].astype(float), zone_label)
        out.loc[grp.index, "adjDecimalLongitude"] = lon
        out.loc[grp.index, "adjDecimalLatitude"] = lat
    return int(ok.sum())


# -----------------------------------------------------------------------------
# Core function
# -----------------------------------------------------------------------------

def refine_tos(data: pd.DataFrame, table_name: str, *, client) -> pd.DataFrame:
    """Return a copy of a TOS table with refined adj* coordinate columns.

    Args:
        data: A TOS table as downloaded (must have namedLocation).
        table_name: NEON table name, e.g. "mam_pertrapnight".
        client: Anything with get(name) -> Location | None
            (normally a LocationClient).

    Raises:
        ValueError: When the table lacks the columns its strategy needs.
    """
    required = REQUIRED_COLUMNS.get(table_name, ["namedLocation"])
    missing = [c for c in required if c not in data.columns]
    if missing:
        raise ValueError(f"{table_name} needs columns {missing}; have {list(data.columns)}")

    # Group writes go through .loc, so work on unique labels
    out = data.reset_index(drop=True)
    for c in ADJ_COLUMNS:
        out[c] = None if c == "adjUtmZone" else np.nan
    out["adjUtmZone"] = out["adjUtmZone"].astype(object)

    if table_name == MAMMAL_TABLE:
        coord = _clean(out["trapCoordinate"]).str.upper()
        on_grid = coord.str.match(TRAP_COORDINATE_RE)
        counts = _resolve(
            out, client, coord.where(on_grid, ""),
            plot_fallback_uncertainty=MAMMAL_GRID_HALF_WIDTH_M,
        )
    elif table_name in BIRD_TABLES:
        counts = _resolve(out, client, _clean(out["pointID"]), plot_fallback_uncertainty=0.0)
    elif table_name == STEM_TABLE:
        counts = _resolve(out, client, _clean(out["pointID"]), plot_fallback_uncertainty=None)
        shifted = _apply_stem_offsets(out)
        print(f"[TOS] {table_name}: shifted {shifted} stems by distance/azimuth")
    else:
        counts = _resolve(out, client, None, plot_fallback_uncertainty=0.0)

    for c in ADJ_COLUMNS:
        if c != "adjUtmZone":
            out[c] = pd.to_numeric(out[c], errors="coerce")

    print(
        f"[TOS] {table_name}: {len(out)} rows | point-level {counts['point']} | "
        f"plot-level {counts['plot']} | unresolved {counts['unresolved']}"
    )
    out.index = data.index
    return out


# -----------------------------------------------------------------------------
# Capture summaries (mam_pertrapnight)
# -----------------------------------------------------------------------------

def filter_captures(data: pd.DataFrame) -> pd.DataFrame:
    """Keep trap-nights whose trapStatus mentions a capture.

    NEON codes: "4 - more than 1 capture in one trap", "5 - capture".
    """
    if "trapStatus" not in data.columns:
        raise ValueError("filter_captures needs a trapStatus column")
    status = data["trapStatus"].fillna("").astype(str)
    return data[status.str.contains("capture", case=False)].copy()


def captures_per_trap(data: pd.DataFrame) -> pd.DataFrame:
    """Count captures per trap, carrying the refined trap coordinates."""
    caught = filter_captures(data)
    keys = [c for c in ("plotID", "trapCoordinate") if c in caught.columns]
    if not keys:
        raise ValueError("captures_per_trap needs plotID and/or trapCoordinate")

    agg = {"nCaptures": (keys[0], "size")}
    for c in ("adjEasting", "adjNorthing", "adjDecimalLatitude", "adjDecimalLongitude"):
        if c in caught.columns:
            agg[c] = (c, "first")
    out = caught.groupby(keys, as_index=False).agg(**agg)
    return out.sort_values("nCaptures", ascending=False, kind="stable").reset_index(drop=True)
