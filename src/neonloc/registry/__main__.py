#!/usr/bin/env python3
"""neonloc.registry

Reference-file CLI for neonloc.

This is one of several neonloc subsystem CLIs:
- neonloc.registry → domain polygons and field sites (this file)
- neonloc.ingest   → NEON data product downloads
- neonloc.geo      → location refinement and sensor positions

neonloc.registry owns the static spatial reference files: where the
sampling network's domains and sites are. Other subsystems use it only
for map backgrounds and site lookups.

Examples:
  # Download domain polygons and the field site list
  python -m neonloc.registry fetch-reference

  # List terrestrial sites in domains D10 and D13
  python -m neonloc.registry list-sites --site-type terrestrial --domain D10 D13

  # Render the domain/site map to a PNG
  python -m neonloc.registry site-map --out figures/site_map.png
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from neonloc.config import (
    load_yaml,
    source_config,
    parse_bbox_arg,
    format_bbox,
    union_bbox,
    DEFAULT_SOURCES_YAML,
)


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for neonloc.registry."""
    ap = argparse.ArgumentParser(
        prog="neonloc.registry",
        description="NEON spatial reference files (domains, field sites)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subsystem CLIs:
  python -m neonloc.registry  # Domains and field sites (this)
  python -m neonloc.ingest    # Data product downloads
  python -m neonloc.geo       # Location refinement, sensor positions
        """,
    )

    # --- Global args ---
    ap.add_argument(
        "--sources-yaml",
        type=Path,
        default=DEFAULT_SOURCES_YAML,
        help=f"Path to sources YAML (default: {DEFAULT_SOURCES_YAML})",
    )
    ap.add_argument(
        "--dry-run",
        action="store_true",
        help="Print planned actions without downloading or writing files",
    )
    ap.add_argument(
        "--overwrite",
        action="store_true",
        help="Re-download / overwrite existing outputs",
    )

    sub = ap.add_subparsers(dest="command", required=True)

    # --- fetch-reference ---
    fetch = sub.add_parser(
        "fetch-reference",
        help="Download domain polygons and field site list",
        description="""
Download the NEON domain shapefile (ZIP) and field site CSV.

URLs and cache directories come from sources.yaml (sources: domains,
sources: field-sites). The ZIP is extracted next to the download.
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    fetch.add_argument(
        "--only",
        nargs="+",
        choices=["domains", "field-sites"],
        default=None,
        help="Fetch only these reference files (default: both)",
    )
    fetch.add_argument(
        "--no-extract",
        action="store_false",
        dest="extract",
        help="Don't extract the domain ZIP",
    )

    # --- list-sites ---
    ls = sub.add_parser("list-sites", help="List field sites, optionally filtered")
    _add_sites_args(ls)
    ls.add_argument("--out-csv", type=Path, default=None, help="Write the filtered list to CSV")

    # --- site-map ---
    smap = sub.add_parser(
        "site-map",
        help="Plot domains (shaded by site count) with field sites",
    )
    _add_sites_args(smap)
    smap.add_argument(
        "--domains-shp",
        type=Path,
        default=None,
        help="Domain shapefile (default: extracted fetch-reference download)",
    )
    smap.add_argument(
        "--domain-field",
        default=None,
        help="Shapefile column holding the domain id (auto-detected if not specified)",
    )
    smap.add_argument(
        "--bbox",
        nargs=4,
        default=None,
        metavar=("XMIN", "YMIN", "XMAX", "YMAX"),
        help="Map extent in lon/lat (default: full extent)",
    )
    smap.add_argument("--out", type=Path, default=None, help="Write PNG instead of showing")

    return ap


def _add_sites_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--sites-csv",
        type=Path,
        default=None,
        help="Field site CSV (default: fetch-reference download)",
    )
    p.add_argument(
        "--site-type",
        choices=["terrestrial", "aquatic"],
        default=None,
        help="Keep only this site type",
    )
    p.add_argument("--domain", nargs="+", default=None, help="Keep only these domains (D01, 1, ...)")


# -----------------------------------------------------------------------------
# Input resolution
# -----------------------------------------------------------------------------

def _resolve_sites_csv(args: argparse.Namespace, sources_yaml: Dict[str, Any]) -> Path:
    if args.sites_csv is not None:
        return args.sites_csv
    from neonloc.registry.fetch_reference import local_path

    path = local_path(source_config(sources_yaml, "field-sites"))
    if not path.exists():
        raise SystemExit(
            f"Field site CSV not found at {path}. "
            "Run `python -m neonloc.registry fetch-reference` or pass --sites-csv."
        )
    return path


def _resolve_domains_shp(args: argparse.Namespace, sources_yaml: Dict[str, Any]) -> Path:
    if args.domains_shp is not None:
        return args.domains_shp
    from neonloc.registry.fetch_reference import find_shapefile

    path = find_shapefile(source_config(sources_yaml, "domains"))
    if path is None:
        raise SystemExit(
            "Domain shapefile not found. "
            "Run `python -m neonloc.registry fetch-reference` or pass --domains-shp."
        )
    return path


def _load_filtered_sites(args: argparse.Namespace, sources_yaml: Dict[str, Any]):
    from neonloc.registry.reference import read_sites, filter_sites

    sites = read_sites(_resolve_sites_csv(args, sources_yaml))
    return filter_sites(sites, site_type=args.site_type, domains=args.domain)


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_fetch_reference(args: argparse.Namespace) -> int:
    sources_yaml = load_yaml(args.sources_yaml)

    from neonloc.registry.fetch_reference import fetch_reference

    return fetch_reference(
        sources_yaml=sources_yaml,
        only=args.only,
        overwrite=args.overwrite,
        dry_run=args.dry_run,
        extract=args.extract,
    )


def _handle_list_sites(args: argparse.Namespace) -> int:
    sources_yaml = load_yaml(args.sources_yaml)
    sites = _load_filtered_sites(args, sources_yaml)

    cols = ["siteID", "domainID", "siteType", "latitude", "longitude", "elevation", "siteName"]
    table = sites[cols].sort_values(["domainID", "siteID"])

    if args.out_csv:
        if args.dry_run:
            print(f"[dry-run] Would write {len(table)} sites -> {args.out_csv}")
            return 0
        if args.out_csv.exists() and not args.overwrite:
            raise SystemExit(f"{args.out_csv} exists; pass --overwrite to replace it")
        args.out_csv.parent.mkdir(parents=True, exist_ok=True)
        table.to_csv(args.out_csv, index=False)
        print(f"Wrote {len(table)} sites -> {args.out_csv}")
        return 0

    for _, row in table.iterrows():
        print(
            f"  - {row['siteID']} | {row['domainID']} | {row['siteType'] or '?':<11} | "
            f"{row['latitude']:.5f}, {row['longitude']:.5f} | {row['siteName']}"
        )
    print(f"{len(table)} sites")
    return 0


def _handle_site_map(args: argparse.Namespace) -> int:
    sources_yaml = load_yaml(args.sources_yaml)
    bbox: Optional[Tuple[float, float, float, float]] = parse_bbox_arg(args.bbox)
    shp = _resolve_domains_shp(args, sources_yaml)

    if args.dry_run:
        print("[dry-run] Would render site map:")
        print(f"  Domains: {shp}")
        print(f"  Sites: {args.sites_csv or '(fetch-reference download)'}")
        if bbox:
            print(f"  Extent: {format_bbox(bbox)}")
        print(f"  Output: {args.out or '(interactive window)'}")
        return 0

    from neonloc.registry.reference import read_domains, sites_per_domain
    from neonloc.plots import plot_site_map, save_or_show

    domains = read_domains(shp, id_field=args.domain_field)
    sites = _load_filtered_sites(args, sources_yaml)
    domains = sites_per_domain(domains, sites)

    # Zoom to the requested domains unless an explicit extent was given
    if bbox is None and args.domain:
        picked = domains[domains["domainID"].isin(sites["domainID"].unique())]
        bbox = union_bbox(tuple(g.bounds) for g in picked.geometry)
        if bbox:
            print(f"Extent: {format_bbox(bbox)}")

    print(f"{len(domains)} domains, {len(sites)} sites")
    ax = plot_site_map(domains, sites, bbox=bbox)
    save_or_show(ax, args.out)
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for neonloc.registry CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)

    handlers = {
        "fetch-reference": _handle_fetch_reference,
        "list-sites": _handle_list_sites,
        "site-map": _handle_site_map,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
