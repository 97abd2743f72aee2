#!/usr/bin/env python3
"""sensors.py

Join NEON sensor readings to the sensor_positions file and summarize them.

Sensor data identify where a reading came from only by index codes:
horizontalPosition ("001" = soil plot 1) and verticalPosition ("501" =
shallowest soil depth). The sensor_positions file maps each HOR.VER pair to
offsets (m) from a surveyed reference point.

The codes are zero-padded strings, but spreadsheet tools and CSV readers
routinely turn them into numbers: "001" -> 1, "001.501" -> 1.501,
"001.010" -> 1.01. Everything is normalized back to "001.501" form before
joining.

Sensors get moved. Positions carry positionStartDateTime/EndDateTime and a
reading is joined only to the position in effect when it was taken.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd


KEY = "horVer"
POSITION_TIME_COLUMNS = ("positionStartDateTime", "positionEndDateTime")

REFERENCE_LAT = ("referenceLatitude", "locationReferenceLatitude", "referenceLocationLatitude")
REFERENCE_LON = ("referenceLongitude", "locationReferenceLongitude", "referenceLocationLongitude")
REFERENCE_ELEV = ("referenceElevation", "locationReferenceElevation", "referenceLocationElevation")


# -----------------------------------------------------------------------------
# Index normalization
# -----------------------------------------------------------------------------

def _is_missing(x) -> bool:
    if x is None:
        return True
    try:
        return bool(pd.isna(x))
    except (TypeError, ValueError):
        return False


def normalize_position(x) -> str:
    """Pad a single HOR or VER code to three digits.

    1, 1.0, "1", " 01 " and "001" all become "001". Returns "" for missing.
    """
    if _is_missing(x):
        return ""
    if isinstance(x, (float, np.floating)):
        if not float(x).is_integer():
            raise ValueError(f"Position code is not an integer: {x!r}")
        x = int(x)
    s = str(x).strip()
    if s.endswith(".0"):
        s = s[:-2]
    if not s.isdigit():
        raise ValueError(f"Position code is not numeric: {x!r}")
    return s.zfill(3)


def normalize_hor_ver(x) -> str:
    """Normalize a combined HOR.VER code to "HHH.VVV".

    The fractional part is right-padded: a numeric 1.01 was "001.010".
    Returns "" for missing.
    """
    if _is_missing(x):
        return ""
    if isinstance(x, (float, np.floating, int, np.integer)):
        s = f"{float(x):.3f}"
    else:
        s = str(x).strip()
    hor, _, ver = s.partition(".")
    if not hor.isdigit() or (ver and not ver.isdigit()) or len(ver) > 3:
        raise ValueError(f"Not a HOR.VER code: {x!r}")
    return f"{hor.zfill(3)}.{ver.ljust(3, '0')}"


def hor_ver_key(df: pd.DataFrame) -> pd.Series:
    """Build the normalized HOR.VER join key for a readings or positions table."""
    if {"horizontalPosition", "verticalPosition"}.issubset(df.columns):
        hor = df["horizontalPosition"].map(normalize_position)
        ver = df["verticalPosition"].map(normalize_position)
        return hor + "." + ver
    if "HOR.VER" in df.columns:
        return df["HOR.VER"].map(normalize_hor_ver)
    raise ValueError(
        "Need horizontalPosition/verticalPosition or HOR.VER columns; "
        f"have {list(df.columns)}"
    )


# -----------------------------------------------------------------------------
# Positions
# -----------------------------------------------------------------------------

def _first_present(columns, candidates: Sequence[str]) -> Optional[str]:
    for c in candidates:
        if c in columns:
            return c
    return None


def prepare_positions(positions: pd.DataFrame) -> pd.DataFrame:
    """Add the horVer key, parse validity windows and numeric offsets."""
    out = positions.copy()
    out[KEY] = hor_ver_key(out)
    for c in POSITION_TIME_COLUMNS:
        if c in out.columns:
            out[c] = pd.to_datetime(out[c], utc=True, errors="coerce")
    for c in ("xOffset", "yOffset", "zOffset", "eastOffset", "northOffset"):
        if c in out.columns:
            out[c] = pd.to_numeric(out[c], errors="coerce")
    return out


def join_positions(
    readings: pd.DataFrame,
    positions: pd.DataFrame,
    *,
    time_col: str = "startDateTime",
) -> pd.DataFrame:
    """Attach position offsets to each reading via the normalized HOR.VER key.

    Joins on siteID too when both tables carry it. Readings without a
    matching position (or outside every validity window) are dropped, and
    each reading joins to at most one position.
    """
    r = readings.copy()
    r[KEY] = hor_ver_key(r)
    r["_row"] = np.arange(len(r))

    p = prepare_positions(positions)
    on: List[str] = [KEY]
    if "siteID" in r.columns and "siteID" in p.columns:
        on.insert(0, "siteID")

    drop_from_p = [c for c in p.columns if c in r.columns and c not in on]
    merged = r.merge(p.drop(columns=drop_from_p), on=on, how="inner")

    has_windows = all(c in merged.columns for c in POSITION_TIME_COLUMNS)
    if has_windows and time_col in merged.columns:
        t = pd.to_datetime(merged[time_col], utc=True, errors="coerce")
        start, end = merged["positionStartDateTime"], merged["positionEndDateTime"]
        valid = (start.isna() | (t >= start)) & (end.isna() | (t < end))
        merged = merged[valid]

    # One position per reading: the most recent installation wins, else the
    # last listed row
    if "positionStartDateTime" in merged.columns:
        merged = merged.sort_values("positionStartDateTime", na_position="first", kind="stable")
    merged = merged.drop_duplicates("_row", keep="last")

    merged = merged.sort_values("_row").drop(columns="_row").reset_index(drop=True)

    n_dropped = len(r) - len(merged)
    print(
        f"[SENSORS] joined {len(merged)} of {len(r)} readings to positions"
        + (f" ({n_dropped} without a matching position)" if n_dropped else "")
    )
    return merged


def sensor_coordinates(positions: pd.DataFrame) -> pd.DataFrame:
    """Absolute sensor latitude/longitude/elevation from reference + offsets.

    Uses eastOffset/northOffset when present (already rotated to true
    east/north), else xOffset/yOffset. Offsets are applied in the UTM zone
    of the reference point.
    """
    out = prepare_positions(positions).reset_index(drop=True)
    lat_col = _first_present(out.columns, REFERENCE_LAT)
    lon_col = _first_present(out.columns, REFERENCE_LON)
    elev_col = _first_present(out.columns, REFERENCE_ELEV)
    if lat_col is None or lon_col is None:
        raise ValueError(f"sensor_coordinates needs reference latitude/longitude; have {list(out.columns)}")

    east_col = "eastOffset" if "eastOffset" in out.columns else "xOffset"
    north_col = "northOffset" if "northOffset" in out.columns else "yOffset"
    for c in (east_col, north_col):
        if c not in out.columns:
            raise ValueError(f"sensor_coordinates needs {c}")

    lat = pd.to_numeric(out[lat_col], errors="coerce")
    lon = pd.to_numeric(out[lon_col], errors="coerce")
    de = out[east_col].fillna(0.0)
    dn = out[north_col].fillna(0.0)

    out["sensorLatitude"] = np.nan
    out["sensorLongitude"] = np.nan
    ok = lat.notna() & lon.notna()
    groups = out[ok].groupby("siteID") if "siteID" in out.columns else [(None, out[ok])]
    for _, grp in groups:
        idx = grp.index
        ref = gpd.GeoSeries(gpd.points_from_xy(lon[idx], lat[idx]), crs="EPSG:4326")
        utm = ref.to_crs(ref.estimate_utm_crs())
        moved = gpd.GeoSeries(
            gpd.points_from_xy(utm.x.to_numpy() + de[idx].to_numpy(), utm.y.to_numpy() + dn[idx].to_numpy()),
            crs=utm.crs,
        ).to_crs("EPSG:4326")
        out.loc[idx, "sensorLongitude"] = moved.x.to_numpy()
        out.loc[idx, "sensorLatitude"] = moved.y.to_numpy()

    if elev_col is not None:
        z = out["zOffset"].fillna(0.0) if "zOffset" in out.columns else 0.0
        out["sensorElevation"] = pd.to_numeric(out[elev_col], errors="coerce") + z
    out.index = positions.index
    return out


# -----------------------------------------------------------------------------
# Aggregation
# -----------------------------------------------------------------------------

def _utc(ts) -> pd.Timestamp:
    ts = pd.Timestamp(ts)
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def vertical_profile(
    joined: pd.DataFrame,
    value_col: str,
    *,
    hor: Optional[str] = None,
    start=None,
    end=None,
    by: str = "zOffset",
    time_col: str = "startDateTime",
) -> pd.DataFrame:
    """Mean of value_col per sensor height/depth, ignoring missing values.

    Args:
        joined: Output of join_positions().
        value_col: Measurement column, e.g. "soilTempMean".
        hor: Keep only this horizontal position (e.g. "001" or 1).
        start, end: Keep readings with start <= time < end.
        by: Grouping column (zOffset by default).

    Returns a frame with columns [by, value_col, "n"], shallowest (highest
    zOffset) first. "n" counts non-missing readings.
    """
    for c in (value_col, by):
        if c not in joined.columns:
            raise ValueError(f"vertical_profile needs column {c!r}")

    df = joined
    if hor is not None:
        df = df[df[KEY].str.startswith(normalize_position(hor) + ".")]
    if start is not None or end is not None:
        t = pd.to_datetime(df[time_col], utc=True, errors="coerce")
        keep = pd.Series(True, index=df.index)
        if start is not None:
            keep &= t >= _utc(start)
        if end is not None:
            keep &= t < _utc(end)
        df = df[keep]

    if df.empty:
        raise ValueError("No readings left after filtering by position/time")

    values = pd.to_numeric(df[value_col], errors="coerce")
    prof = values.groupby(df[by]).agg(["mean", "count"])
    prof = prof.rename(columns={"mean": value_col, "count": "n"}).reset_index()
    return prof.sort_values(by, ascending=False).reset_index(drop=True)
