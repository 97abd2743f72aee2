#!/usr/bin/env python3
"""neonloc.config

Shared configuration utilities for the neonloc CLI subsystems.

This module provides common helpers used across neonloc.registry,
neonloc.ingest and neonloc.geo.

Design notes:
- YAML loading is strict: files must exist and be valid mappings.
- Bbox helpers are used for map extents and CLI summaries.
- All functions are pure (no side effects on import).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return as dict.

    Raises SystemExit on missing file or invalid format (non-mapping).
    """
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


def source_config(sources_yaml: Dict[str, Any], source_id: str) -> Dict[str, Any]:
    """Return the config block for one source, or exit with a clear message.

    Expects structure like:
        sources:
          domains:
            url: "..."
          field-sites:
            url: "..."
    """
    sources = sources_yaml.get("sources")
    if not isinstance(sources, dict):
        raise SystemExit("sources.yaml must contain top-level 'sources:' mapping")
    cfg = sources.get(source_id)
    if not isinstance(cfg, dict):
        raise SystemExit(f"sources.yaml missing sources: -> {source_id}")
    return cfg


def resolve_token(cli_token: Optional[str], sources_yaml: Dict[str, Any]) -> Optional[str]:
    """Pick the NEON API token: CLI arg, then `api.token`, then $NEON_TOKEN.

    Returns None for anonymous access (lower rate limits, still works).
    """
    if cli_token:
        return cli_token
    api = sources_yaml.get("api")
    if isinstance(api, dict) and api.get("token"):
        return str(api["token"])
    return os.environ.get("NEON_TOKEN") or None


def api_base_url(sources_yaml: Dict[str, Any]) -> str:
    api = sources_yaml.get("api")
    if isinstance(api, dict) and api.get("base_url"):
        return str(api["base_url"]).rstrip("/")
    return DEFAULT_API_BASE_URL


# -----------------------------------------------------------------------------
# Bounding box utilities
# -----------------------------------------------------------------------------
# Used by the map plots (extent) and by CLI summaries.

def coerce_bbox(x: Any) -> Optional[Tuple[float, float, float, float]]:
    """Try to coerce [xmin, ymin, xmax, ymax] into a bbox tuple.

    Returns None if input is invalid or missing.
    """
    if x is None:
        return None
    if isinstance(x, (list, tuple)) and len(x) == 4:
        try:
            xmin, ymin, xmax, ymax = map(float, x)
        except (TypeError, ValueError):
            return None
        if xmin > xmax or ymin > ymax:
            return None
        return (xmin, ymin, xmax, ymax)
    return None


def union_bbox(
    bboxes: Iterable[Tuple[float, float, float, float]]
) -> Optional[Tuple[float, float, float, float]]:
    """Compute the bounding box that contains all input bboxes.

    Returns None if input is empty.
    """
    bboxes = list(bboxes)
    if not bboxes:
        return None
    xmin = min(b[0] for b in bboxes)
    ymin = min(b[1] for b in bboxes)
    xmax = max(b[2] for b in bboxes)
    ymax = max(b[3] for b in bboxes)
    return (xmin, ymin, xmax, ymax)


def format_bbox(b: Tuple[float, float, float, float], precision: int = 5) -> str:
    """Format a bbox tuple as a readable string."""
    return f"[{b[0]:.{precision}f}, {b[1]:.{precision}f}, {b[2]:.{precision}f}, {b[3]:.{precision}f}]"


def parse_bbox_arg(values: Optional[List[str]]) -> Optional[Tuple[float, float, float, float]]:
    """Parse a `--bbox xmin ymin xmax ymax` CLI value, exiting on bad input."""
    if values is None:
        return None
    bbox = coerce_bbox(values)
    if bbox is None:
        raise SystemExit(f"Invalid --bbox {values}; expected xmin ymin xmax ymax")
    return bbox


# -----------------------------------------------------------------------------
# Default paths
# -----------------------------------------------------------------------------
# Centralized so all CLIs use the same defaults.

DEFAULT_SOURCES_YAML = Path("config/sources.yaml")
DEFAULT_RAW_DIR = Path("data/raw/neon")
DEFAULT_API_BASE_URL = "https://data.neonscience.org/api/v0"
