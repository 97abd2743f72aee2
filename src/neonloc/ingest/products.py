#!/usr/bin/env python3
"""products.py

Load NEON data products as a dict of pandas tables.

Two sources give the same shape (table name -> DataFrame):
- load_product(): bulk download via neonutilities.load_by_product()
- load_stacked_dir(): CSVs already on disk (write_tables() output, or the
  stackedFiles/ folder from neonutilities.stack_by_table())

Tables follow NEON naming: data tables by name (mam_pertrapnight,
ST_30_minute) and metadata tables suffixed with the product number
(sensor_positions_00041, variables_10072, readme_00041).

Called by:
  python -m neonloc.ingest product|mammals|soil-temp
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, Optional

import pandas as pd


Tables = Dict[str, pd.DataFrame]

# Position index columns must stay strings: "001" read as int loses its zeros
INDEX_DTYPES = {
    "horizontalPosition": str,
    "verticalPosition": str,
    "HOR.VER": str,
    "trapCoordinate": str,
    "pointID": str,
}

_DPID_RE = re.compile(r"^DP[1-4]\.\d{5}\.\d{3}$")
_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def _validate_request(dpid: str, startdate: Optional[str], enddate: Optional[str]) -> None:
    if not _DPID_RE.match(dpid):
        raise SystemExit(f"Not a NEON data product id: {dpid!r} (expected like DP1.10072.001)")
    for label, value in (("startdate", startdate), ("enddate", enddate)):
        if value is not None and not _MONTH_RE.match(value):
            raise SystemExit(f"{label} must be YYYY-MM, got {value!r}")
    if startdate and enddate and startdate > enddate:
        raise SystemExit(f"startdate ({startdate}) must be <= enddate ({enddate})")


def load_product(
    dpid: str,
    site: str,
    startdate: Optional[str] = None,
    enddate: Optional[str] = None,
    *,
    package: str = "basic",
    timeindex: Optional[int] = None,
    tabl: Optional[str] = None,
    token: Optional[str] = None,
) -> Tables:
    """Download and stack one data product for one site and month range.

    Parameters
    ----------
    dpid : str
        Data product id, e.g. "DP1.10072.001".
    site : str
        Four-letter site code, e.g. "NIWO".
    startdate, enddate : str | None
        Inclusive YYYY-MM month range (None = all available).
    package : str
        "basic" or "expanded".
    timeindex : int | None
        Averaging interval in minutes for sensor products (e.g. 30).
    tabl : str | None
        Single table to fetch for sensor products.
    token : str | None
        NEON API token.
    """
    _validate_request(dpid, startdate, enddate)

    # Lazy import: neonutilities pulls in a lot and is only needed online
    import neonutilities as nu

    kwargs = {
        "dpid": dpid,
        "site": site,
        "startdate": startdate,
        "enddate": enddate,
        "package": package,
        "check_size": False,
        "token": token,
    }
    if timeindex is not None:
        kwargs["timeindex"] = timeindex
    if tabl is not None:
        kwargs["tabl"] = tabl

    print(f"[INGEST] {dpid} {site} {startdate or '*'}..{enddate or '*'} ({package})")
    tables = nu.load_by_product(**kwargs)
    if not isinstance(tables, dict) or not tables:
        raise SystemExit(f"No data returned for {dpid} at {site} {startdate}..{enddate}")

    for name, df in tables.items():
        if isinstance(df, pd.DataFrame):
            print(f"  - {name}: {len(df)} rows")
    return {name: df for name, df in tables.items() if isinstance(df, pd.DataFrame)}


def load_stacked_dir(folder: Path) -> Tables:
    """Read every table file in a folder into the load_product() shape.

    CSVs are read with position index columns as strings. Readme .txt files
    become a one-column ("line") DataFrame.
    """
    if not folder.is_dir():
        raise SystemExit(f"Not a directory: {folder}")

    tables: Tables = {}
    for path in sorted(folder.iterdir()):
        if path.suffix.lower() == ".csv":
            tables[path.stem] = pd.read_csv(path, dtype=INDEX_DTYPES)
        elif path.suffix.lower() == ".txt":
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
            tables[path.stem] = pd.DataFrame({"line": lines})

    if not tables:
        raise SystemExit(f"No .csv/.txt tables found in {folder}")
    return tables


def find_table(tables: Tables, name: str) -> pd.DataFrame:
    """Look up a table by exact name, then by prefix.

    "sensor_positions" matches "sensor_positions_00041". Raises KeyError
    listing the available names when nothing (or more than one) matches.
    """
    if name in tables:
        return tables[name]
    hits = [k for k in tables if k.startswith(name)]
    if len(hits) == 1:
        return tables[hits[0]]
    if not hits:
        raise KeyError(f"No table {name!r}; available: {sorted(tables)}")
    raise KeyError(f"Table name {name!r} is ambiguous: {sorted(hits)}")


def write_tables(
    tables: Tables,
    out_dir: Path,
    *,
    overwrite: bool = False,
    dry_run: bool = False,
) -> int:
    """Write each table to out_dir/<name>.csv. Returns number written."""
    n_written = 0
    for name, df in sorted(tables.items()):
        out_path = out_dir / f"{name}.csv"
        if out_path.exists() and not overwrite:
            print(f"[SKIP] {out_path}")
            continue
        if dry_run:
            print(f"[dry-run] Would write {len(df)} rows -> {out_path}")
            continue
        out_dir.mkdir(parents=True, exist_ok=True)
        df.to_csv(out_path, index=False)
        n_written += 1
        print(f"Wrote {len(df)} rows -> {out_path}")
    return n_written


def variable_units(variables: Optional[pd.DataFrame], table: str, field: str) -> str:
    """Units for one field from a product's variables_* table, or ""."""
    if variables is None or variables.empty:
        return ""
    if not {"fieldName", "units"}.issubset(variables.columns):
        return ""
    rows = variables[variables["fieldName"] == field]
    if "table" in variables.columns:
        in_table = rows[rows["table"] == table]
        if not in_table.empty:
            rows = in_table
    if rows.empty:
        return ""
    units = rows["units"].iloc[0]
    return "" if pd.isna(units) else str(units)
