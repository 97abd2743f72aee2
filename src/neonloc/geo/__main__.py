#!/usr/bin/env python3
"""neonloc.geo

Geolocation CLI for neonloc.

This is one of several neonloc subsystem CLIs:
- neonloc.registry → domain polygons and field sites
- neonloc.ingest   → NEON data product downloads
- neonloc.geo      → location refinement and sensor positions (this file)

neonloc.geo works on tables *already downloaded* by neonloc.ingest:
- Refining plot-level TOS coordinates to trap/point level
- Summarizing captures per trap
- Joining sensor readings to sensor_positions and building vertical profiles
- Computing absolute sensor coordinates from reference offsets

Design notes:
- Inputs are either single CSVs or a stacked dir (one CSV per table)
- Lazy-imports geo modules to keep CLI startup fast
- Only refine-tos/captures touch the network (locations endpoint)

Examples:
  # Trap-level coordinates for July 2019 NIWO mammal trapping
  python -m neonloc.geo refine-tos \
    --table-csv data/raw/neon/DP1.10072.001/NIWO/mam_pertrapnight.csv \
    --out-csv data/interim/mam_pertrapnight_refined.csv --plot-out figures/traps.png

  # Soil temperature profile at plot 001 on 2018-07-15
  python -m neonloc.geo sensor-profile \
    --stacked-dir data/raw/neon/DP1.00041.001/TREE \
    --hor 001 --start 2018-07-15 --end 2018-07-16 --plot-out figures/profile.png
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional

from neonloc.config import (
    load_yaml,
    source_config,
    resolve_token,
    api_base_url,
    DEFAULT_SOURCES_YAML,
)


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for neonloc.geo."""
    ap = argparse.ArgumentParser(
        prog="neonloc.geo",
        description="Location refinement and sensor positions for NEON data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subsystem CLIs:
  python -m neonloc.registry  # Domains and field sites
  python -m neonloc.ingest    # Data product downloads
  python -m neonloc.geo       # Location refinement, sensor positions (this)
        """,
    )

    # --- Global args ---
    ap.add_argument(
        "--sources-yaml",
        type=Path,
        default=DEFAULT_SOURCES_YAML,
        help=f"Path to sources YAML (default: {DEFAULT_SOURCES_YAML})",
    )
    ap.add_argument("--token", default=None, help="NEON API token (default: sources.yaml api.token or $NEON_TOKEN)")
    ap.add_argument(
        "--dry-run",
        action="store_true",
        help="Print planned actions without calling the API or writing files",
    )
    ap.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite existing output files",
    )

    sub = ap.add_subparsers(dest="command", required=True)

    # --- refine-tos ---
    refine = sub.add_parser(
        "refine-tos",
        help="Refine plot-level TOS coordinates (traps, points, stems)",
        description="""
Resolve trap/point-level coordinates for a TOS table via the NEON
locations endpoint and append adj* columns (adjDecimalLatitude,
adjDecimalLongitude, adjCoordinateUncertainty, adjElevation, adjEasting,
adjNorthing, ...).
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_table_args(refine, default_table="mam_pertrapnight")
    refine.add_argument("--out-csv", type=Path, default=None, help="Write refined table to CSV")
    _add_plot_args(refine)

    # --- captures ---
    cap = sub.add_parser(
        "captures",
        help="Captures per trap from (refined) mam_pertrapnight",
    )
    _add_table_args(cap, default_table="mam_pertrapnight")
    cap.add_argument("--out-csv", type=Path, default=None, help="Write per-trap capture counts to CSV")
    _add_plot_args(cap)

    # --- sensor-profile ---
    prof = sub.add_parser(
        "sensor-profile",
        help="Join readings to sensor positions and average by depth",
        description="""
Join sensor readings to sensor_positions on the normalized HOR.VER key,
filter to one horizontal position and time window, and average the value
by zOffset (missing values ignored).
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_sensor_args(prof)
    prof.add_argument("--value", default=None, help="Value column (default: preset soil-temp value, soilTempMean)")
    prof.add_argument("--hor", default=None, help="Horizontal position, e.g. 001")
    prof.add_argument("--start", default=None, help="Keep readings at or after this time (UTC)")
    prof.add_argument("--end", default=None, help="Keep readings before this time (UTC)")
    prof.add_argument("--timeseries", action="store_true", help="Plot the time series per depth instead of the profile")
    prof.add_argument("--out-csv", type=Path, default=None, help="Write the profile to CSV")
    _add_plot_args(prof)

    # --- sensor-coords ---
    coords = sub.add_parser(
        "sensor-coords",
        help="Absolute sensor coordinates from reference point + offsets",
    )
    coords.add_argument("--positions-csv", type=Path, default=None, help="sensor_positions CSV")
    coords.add_argument("--stacked-dir", type=Path, default=None, help="Folder holding sensor_positions_*.csv")
    coords.add_argument("--out-csv", type=Path, default=None, help="Write positions with coordinates to CSV")

    return ap


def _add_table_args(p: argparse.ArgumentParser, default_table: str) -> None:
    p.add_argument("--table-csv", type=Path, default=None, help="TOS table CSV")
    p.add_argument("--stacked-dir", type=Path, default=None, help="Folder holding <table-name>.csv")
    p.add_argument("--table-name", default=default_table, help=f"NEON table name (default: {default_table})")


def _add_sensor_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--stacked-dir", type=Path, default=None, help="Folder with readings, sensor_positions and variables CSVs")
    p.add_argument("--readings-csv", type=Path, default=None, help="Sensor readings CSV (e.g. ST_30_minute.csv)")
    p.add_argument("--positions-csv", type=Path, default=None, help="sensor_positions CSV")
    p.add_argument("--readings-table", default=None, help="Readings table name in --stacked-dir (default: preset soil-temp table)")


def _add_plot_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--plot", action="store_true", help="Show a diagnostic plot")
    p.add_argument("--plot-out", type=Path, default=None, help="Write the diagnostic plot to PNG")


# -----------------------------------------------------------------------------
# Input helpers
# -----------------------------------------------------------------------------

def _read_csv(path: Path):
    import pandas as pd
    from neonloc.ingest.products import INDEX_DTYPES

    if not path.exists():
        raise SystemExit(f"CSV not found: {path}")
    return pd.read_csv(path, dtype=INDEX_DTYPES)


def _load_table(args: argparse.Namespace):
    if args.table_csv is not None:
        return _read_csv(args.table_csv)
    if args.stacked_dir is not None:
        from neonloc.ingest.products import load_stacked_dir, find_table

        return find_table(load_stacked_dir(args.stacked_dir), args.table_name)
    raise SystemExit("Pass --table-csv or --stacked-dir")


def _soil_preset(sources_yaml: Dict[str, Any]) -> Dict[str, Any]:
    sources = sources_yaml.get("sources")
    if isinstance(sources, dict) and "soil-temp" in sources:
        return source_config(sources_yaml, "soil-temp")
    return {}


def _location_client(args: argparse.Namespace, sources_yaml: Dict[str, Any]):
    from neonloc.geo.locations import LocationClient

    return LocationClient(
        base_url=api_base_url(sources_yaml),
        token=resolve_token(args.token, sources_yaml),
    )


def _write_csv(df, out: Path, args: argparse.Namespace) -> None:
    if out.exists() and not args.overwrite:
        raise SystemExit(f"{out} exists; pass --overwrite to replace it")
    out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out, index=False)
    print(f"Wrote {len(df)} rows -> {out}")


def _finish_plot(ax, args: argparse.Namespace) -> None:
    from neonloc.plots import save_or_show

    save_or_show(ax, args.plot_out)


def _refined(args: argparse.Namespace, sources_yaml: Dict[str, Any]):
    data = _load_table(args)
    if "adjEasting" in data.columns:
        print("[TOS] table already refined; reusing adj* columns")
        return data

    from neonloc.geo.tos import refine_tos

    with _location_client(args, sources_yaml) as client:
        return refine_tos(data, args.table_name, client=client)


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_refine_tos(args: argparse.Namespace) -> int:
    sources_yaml = load_yaml(args.sources_yaml)

    if args.dry_run:
        print("[dry-run] Would refine TOS locations:")
        print(f"  Table: {args.table_csv or args.stacked_dir} ({args.table_name})")
        print(f"  API: {api_base_url(sources_yaml)}")
        print(f"  Output: {args.out_csv or '(none)'}")
        return 0

    refined = _refined(args, sources_yaml)
    if args.out_csv:
        _write_csv(refined, args.out_csv, args)

    if args.plot or args.plot_out:
        from neonloc.plots import plot_trap_positions

        _finish_plot(plot_trap_positions(refined, color_by="trapStatus" if "trapStatus" in refined.columns else None), args)
    return 0


def _handle_captures(args: argparse.Namespace) -> int:
    sources_yaml = load_yaml(args.sources_yaml)

    if args.dry_run:
        print("[dry-run] Would count captures per trap:")
        print(f"  Table: {args.table_csv or args.stacked_dir} ({args.table_name})")
        print(f"  Output: {args.out_csv or '(none)'}")
        return 0

    from neonloc.geo.tos import filter_captures, captures_per_trap

    refined = _refined(args, sources_yaml)
    per_trap = captures_per_trap(refined)
    print(f"[TOS] {int(per_trap['nCaptures'].sum())} captures in {len(per_trap)} traps")
    for _, row in per_trap.head(10).iterrows():
        print(f"  - {row.get('plotID', '')} {row.get('trapCoordinate', '')}: {row['nCaptures']}")

    if args.out_csv:
        _write_csv(per_trap, args.out_csv, args)

    if args.plot or args.plot_out:
        from neonloc.plots import plot_trap_positions

        ax = plot_trap_positions(filter_captures(refined), color_by="plotID", title="Trap-nights with captures")
        _finish_plot(ax, args)
    return 0


def _handle_sensor_profile(args: argparse.Namespace) -> int:
    sources_yaml = load_yaml(args.sources_yaml)
    preset = _soil_preset(sources_yaml)
    value_col = args.value or preset.get("value") or "soilTempMean"
    readings_table = args.readings_table or preset.get("table") or "ST_30_minute"

    if args.dry_run:
        print("[dry-run] Would build vertical profile:")
        print(f"  Readings: {args.readings_csv or f'{args.stacked_dir}/{readings_table}'}")
        print(f"  Value: {value_col} | HOR: {args.hor or 'all'} | window: {args.start}..{args.end}")
        return 0

    from neonloc.ingest.products import load_stacked_dir, find_table, variable_units
    from neonloc.geo.sensors import join_positions, vertical_profile

    variables = None
    if args.stacked_dir is not None:
        tables = load_stacked_dir(args.stacked_dir)
        readings = find_table(tables, readings_table)
        positions = find_table(tables, "sensor_positions")
        try:
            variables = find_table(tables, "variables")
        except KeyError:
            variables = None
    elif args.readings_csv is not None and args.positions_csv is not None:
        readings = _read_csv(args.readings_csv)
        positions = _read_csv(args.positions_csv)
    else:
        raise SystemExit("Pass --stacked-dir, or both --readings-csv and --positions-csv")

    units = variable_units(variables, readings_table, value_col)
    joined = join_positions(readings, positions)
    profile = vertical_profile(joined, value_col, hor=args.hor, start=args.start, end=args.end)

    print(f"[SENSORS] {value_col} by zOffset{f' ({units})' if units else ''}:")
    for _, row in profile.iterrows():
        print(f"  {row['zOffset']:>7.2f} m  {row[value_col]:8.3f}  (n={int(row['n'])})")

    if args.out_csv:
        _write_csv(profile, args.out_csv, args)

    if args.plot or args.plot_out:
        from neonloc.plots import plot_vertical_profile, plot_sensor_timeseries

        if args.timeseries:
            sel = joined
            if args.hor is not None:
                from neonloc.geo.sensors import KEY, normalize_position

                sel = sel[sel[KEY].str.startswith(normalize_position(args.hor) + ".")]
            ax = plot_sensor_timeseries(sel, value_col, units=units)
        else:
            ax = plot_vertical_profile(profile, value_col, units=units)
        _finish_plot(ax, args)
    return 0


def _handle_sensor_coords(args: argparse.Namespace) -> int:
    if args.positions_csv is not None:
        positions = _read_csv(args.positions_csv)
    elif args.stacked_dir is not None:
        from neonloc.ingest.products import load_stacked_dir, find_table

        positions = find_table(load_stacked_dir(args.stacked_dir), "sensor_positions")
    else:
        raise SystemExit("Pass --positions-csv or --stacked-dir")

    if args.dry_run:
        print(f"[dry-run] Would compute coordinates for {len(positions)} sensor positions")
        return 0

    from neonloc.geo.sensors import KEY, sensor_coordinates

    coords = sensor_coordinates(positions)
    for _, row in coords.iterrows():
        print(f"  - {row[KEY]} | {row['sensorLatitude']:.6f}, {row['sensorLongitude']:.6f}")

    if args.out_csv:
        _write_csv(coords, args.out_csv, args)
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for neonloc.geo CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)

    handlers = {
        "refine-tos": _handle_refine_tos,
        "captures": _handle_captures,
        "sensor-profile": _handle_sensor_profile,
        "sensor-coords": _handle_sensor_coords,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
