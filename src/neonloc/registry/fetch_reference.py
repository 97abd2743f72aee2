#!/usr/bin/env python3
"""fetch_reference.py

Fetch NEON spatial reference files.

This handler:
- Reads the domain-polygon ZIP and field-site CSV URLs from sources.yaml
- Downloads to data/raw/reference/
- Extracts the domain ZIP (shapefile components)
- Respects --dry-run and --overwrite

Called by:
  python -m neonloc.registry fetch-reference

The downloaded files are then read by neonloc.registry.reference.
"""

from __future__ import annotations

import urllib.request
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from neonloc.config import source_config


REFERENCE_SOURCES = ("domains", "field-sites")


def _ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def _extract_zip(zip_path: Path, extract_to: Path) -> Path:
    """Extract ZIP file into a subdirectory named after the ZIP."""
    extract_dir = extract_to / zip_path.stem
    _ensure_dir(extract_dir)

    print(f"[REFERENCE] Extracting to: {extract_dir}")
    with zipfile.ZipFile(zip_path, "r") as zf:
        members = zf.namelist()
        print(f"[REFERENCE] ZIP contains {len(members)} files")
        zf.extractall(extract_dir)

    return extract_dir


def local_path(cfg: Dict[str, Any]) -> Path:
    """Where the downloaded file for a reference source lives."""
    url = cfg.get("url")
    if not url:
        raise SystemExit("reference source config missing url")
    return Path(cfg.get("cache_dir", "data/raw/reference")) / Path(str(url)).name


def find_shapefile(cfg: Dict[str, Any]) -> Optional[Path]:
    """Locate the extracted domain shapefile, if it has been fetched."""
    zip_path = local_path(cfg)
    extracted_dir = zip_path.parent / zip_path.stem
    if not extracted_dir.exists():
        return None
    wanted = cfg.get("shapefile")
    shp_files = sorted(extracted_dir.rglob(wanted or "*.shp"))
    return shp_files[0] if shp_files else None


def _fetch_one(
    source_id: str,
    cfg: Dict[str, Any],
    *,
    overwrite: bool,
    dry_run: bool,
    extract: bool,
) -> None:
    out_path = local_path(cfg)
    url = str(cfg["url"])
    is_zip = out_path.suffix.lower() == ".zip"

    if out_path.exists() and not overwrite:
        print(f"[SKIP] {source_id} already exists: {out_path}")
        if is_zip and extract and find_shapefile(cfg) is None and not dry_run:
            _extract_zip(out_path, out_path.parent)
        return

    print(f"[REFERENCE] {source_id}")
    print(f"  - url: {url}")
    print(f"  - out: {out_path}")

    if dry_run:
        print("[dry-run] No download performed")
        return

    _ensure_dir(out_path.parent)
    try:
        urllib.request.urlretrieve(url, out_path)
    except Exception as e:
        raise SystemExit(f"Failed to download {source_id} from {url}: {e}") from e
    print(f"[REFERENCE] Download complete: {out_path.name}")

    if is_zip and extract:
        _extract_zip(out_path, out_path.parent)


def fetch_reference(
    *,
    sources_yaml: Dict[str, Any],
    only: Optional[List[str]] = None,
    overwrite: bool = False,
    dry_run: bool = False,
    extract: bool = True,
) -> int:
    """Fetch the domain polygons and field-site list.

    Parameters
    ----------
    sources_yaml : dict
        Parsed sources.yaml
    only : list[str] | None
        Subset of REFERENCE_SOURCES to fetch (default: all)
    overwrite : bool
        If True, re-download even if file exists
    dry_run : bool
        If True, print planned actions without downloading
    extract : bool
        If True, extract ZIP archives after download

    Returns
    -------
    int
        Exit code (0 = success)
    """
    wanted = list(only) if only else list(REFERENCE_SOURCES)
    for source_id in wanted:
        if source_id not in REFERENCE_SOURCES:
            raise SystemExit(f"Unknown reference source: {source_id} (choose from {REFERENCE_SOURCES})")
        cfg = source_config(sources_yaml, source_id)
        _fetch_one(source_id, cfg, overwrite=overwrite, dry_run=dry_run, extract=extract)
    return 0


if __name__ == "__main__":
    raise SystemExit(
        "This module is not meant to be run directly. "
        "Use: python -m neonloc.registry fetch-reference"
    )
