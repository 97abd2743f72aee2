#!/usr/bin/env python3
"""neonloc.ingest

Data product download CLI for neonloc.

This is one of several neonloc subsystem CLIs:
- neonloc.registry → domain polygons and field sites
- neonloc.ingest   → NEON data product downloads (this file)
- neonloc.geo      → location refinement and sensor positions

Design goals:
- One entrypoint for downloads only
- Presets (mammals, soil-temp) configured in sources.yaml
- Every table lands as CSV under data/raw/neon/<dpid>/<site>/ so the
  neonloc.geo commands can run offline

Examples:
  # Small mammal trapping at NIWO, July 2019 (preset from sources.yaml)
  python -m neonloc.ingest mammals

  # Soil temperature at TREE, overriding the preset month
  python -m neonloc.ingest soil-temp --start 2018-08 --end 2018-08

  # Any product
  python -m neonloc.ingest product --dpid DP1.10098.001 --site WREF --start 2019-01 --end 2019-12
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional

from neonloc.config import (
    load_yaml,
    source_config,
    resolve_token,
    DEFAULT_SOURCES_YAML,
    DEFAULT_RAW_DIR,
)


PRESETS = ("mammals", "soil-temp")


# -----------------------------
# CLI
# -----------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="neonloc.ingest", description="NEON data product downloads")

    # Global args (available for all subcommands)
    ap.add_argument("--sources-yaml", type=Path, default=DEFAULT_SOURCES_YAML, help=f"Path to sources.yaml (default: {DEFAULT_SOURCES_YAML})")
    ap.add_argument("--token", default=None, help="NEON API token (default: sources.yaml api.token or $NEON_TOKEN)")
    ap.add_argument("--out-root", type=Path, default=DEFAULT_RAW_DIR, help=f"Root output dir (default: {DEFAULT_RAW_DIR})")
    ap.add_argument("--overwrite", action="store_true", help="Rewrite existing CSVs")
    ap.add_argument("--dry-run", action="store_true", help="Print planned actions without downloading/writing")

    sub = ap.add_subparsers(dest="command", required=True)

    # --- product ---
    prod = sub.add_parser("product", help="Download any data product")
    prod.add_argument("--dpid", required=True, help="Data product id, e.g. DP1.10072.001")
    prod.add_argument("--site", required=True, help="Four-letter site code, e.g. NIWO")
    _add_range_args(prod)
    prod.add_argument("--package", choices=["basic", "expanded"], default="basic")
    prod.add_argument("--timeindex", type=int, default=None, help="Averaging interval (minutes) for sensor products")
    prod.add_argument("--table", default=None, help="Single table to fetch (sensor products)")

    # --- presets ---
    for name, help_text in (
        ("mammals", "Small mammal box trapping (preset sources: mammals)"),
        ("soil-temp", "Soil temperature (preset sources: soil-temp)"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--site", default=None, help="Override preset site")
        _add_range_args(p)

    return ap


def _add_range_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--start", default=None, help="First month, YYYY-MM")
    p.add_argument("--end", default=None, help="Last month, YYYY-MM")


def _request_from_args(args: argparse.Namespace, sources_yaml: Dict[str, Any]) -> Dict[str, Any]:
    """Merge CLI args over the preset block (presets) or take them as-is (product)."""
    if args.command == "product":
        return {
            "dpid": args.dpid,
            "site": args.site,
            "startdate": args.start,
            "enddate": args.end,
            "package": args.package,
            "timeindex": args.timeindex,
            "tabl": args.table,
        }

    cfg = source_config(sources_yaml, args.command)
    if not cfg.get("dpid") or not cfg.get("site"):
        raise SystemExit(f"sources.yaml preset {args.command} needs dpid and site")
    timeindex = cfg.get("timeindex")
    return {
        "dpid": str(cfg["dpid"]),
        "site": args.site or str(cfg["site"]),
        "startdate": args.start or cfg.get("startdate"),
        "enddate": args.end or cfg.get("enddate"),
        "package": str(cfg.get("package", "basic")),
        "timeindex": int(timeindex) if timeindex is not None else None,
        "tabl": cfg.get("table"),
    }


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    # Load YAML only once, inside main (so import doesn't have side effects)
    sources_yaml = load_yaml(args.sources_yaml)

    if args.command not in ("product",) + PRESETS:
        raise SystemExit(f"Unknown command: {args.command}")

    request = _request_from_args(args, sources_yaml)
    out_dir = args.out_root / request["dpid"] / request["site"]

    if args.dry_run:
        print("[dry-run] Would download:")
        for k, v in request.items():
            if v is not None:
                print(f"  {k}: {v}")
        print(f"  out: {out_dir}")
        return 0

    # Lazy import handler (keeps CLI import fast)
    from neonloc.ingest.products import load_product, write_tables

    dpid = request.pop("dpid")
    site = request.pop("site")
    tables = load_product(dpid, site, token=resolve_token(args.token, sources_yaml), **request)
    write_tables(tables, out_dir, overwrite=args.overwrite)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
