#!/usr/bin/env python3
"""reference.py

Read the NEON spatial reference files into GeoDataFrames:
- domain polygons (NEON_Domains.shp) -> one row per domain, normalized domainID
- field site list (NEON_Field_Site_Metadata_*.csv) -> one point per site

Both files are published with headers that have changed between releases
("DomainID" vs "domainID", "field_site_id" vs "Site.ID", ...). Columns are
matched against known aliases after squashing case and punctuation, so any
of the released variants load into the same canonical schema.

Domain codes appear as 1, "01", "D1" and "D01" across files. They are all
normalized to "D01" so the two files join.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import geopandas as gpd
import pandas as pd


SITE_COLUMNS: Dict[str, Sequence[str]] = {
    "siteID": ("field_site_id", "site_id", "siteid", "site.id", "site", "sitecode"),
    "siteName": ("field_site_name", "site_name", "site.name", "sitename", "name"),
    "domainID": ("field_domain_id", "domain_id", "domainid", "domain.number", "domain"),
    "siteTypeLabel": ("field_site_type", "site_type", "site.type", "sitetype", "type"),
    "latitude": ("field_latitude", "latitude", "decimallatitude", "lat"),
    "longitude": ("field_longitude", "longitude", "decimallongitude", "lon", "lng"),
    "elevation": ("field_mean_elevation_m", "elevation_m", "elevation", "mean_elevation"),
}
REQUIRED_SITE_COLUMNS = ("siteID", "latitude", "longitude")

SITE_TYPES = ("terrestrial", "aquatic")


# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------

def _squash(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", str(name).lower())


def _pick_column(columns: Iterable[str], aliases: Sequence[str]) -> Optional[str]:
    """Return the first column whose squashed name matches an alias.

    Aliases are tried in order so the most specific one wins when a file
    carries several candidates (e.g. both "field_site_id" and "site").
    """
    by_squash = {}
    for c in columns:
        by_squash.setdefault(_squash(c), c)
    for alias in aliases:
        hit = by_squash.get(_squash(alias))
        if hit is not None:
            return hit
    return None


def _make_valid(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Fix invalid geometries (self-intersecting domain rings do occur)."""
    gdf = gdf.copy()
    gdf["geometry"] = gdf.geometry.make_valid()
    return gdf


def normalize_domain_id(x) -> str:
    """Normalize a NEON domain code to the "D01" form.

    Handles ints, floats read from shapefiles (1.0), "01", " D1 ", "d01".
    Returns empty string for invalid inputs.
    """
    if x is None:
        return ""
    try:
        if pd.isna(x):
            return ""
    except (TypeError, ValueError):
        pass
    s = str(x).strip()
    m = re.match(r"^[Dd]?\s*0*(\d+)(?:\.0+)?$", s)
    if not m:
        return ""
    return f"D{int(m.group(1)):02d}"


def classify_site_type(label) -> str:
    """Map a NEON site-type label to "terrestrial" / "aquatic".

    "Core Terrestrial", "Gradient Aquatic", "terrestrial" etc. are all
    accepted; anything else maps to "".
    """
    if label is None:
        return ""
    s = str(label).lower()
    for kind in SITE_TYPES:
        if kind in s:
            return kind
    return ""


# -----------------------------------------------------------------------------
# Domain polygons
# -----------------------------------------------------------------------------

def read_domains(
    shp: Path,
    *,
    id_field: Optional[str] = None,
    name_field: Optional[str] = None,
    target_crs: Optional[str] = "EPSG:4326",
) -> gpd.GeoDataFrame:
    """Read the NEON domain shapefile into one clean row per domain.

    Returns a GeoDataFrame with columns: domainID, domainName, geometry.

    Raises:
        SystemExit: On missing file, zero features, missing CRS, or when
        the domain id column can't be found.
    """
    if not shp.exists():
        raise SystemExit(f"Domain shapefile not found: {shp}")

    gdf = gpd.read_file(shp)
    if gdf.empty:
        raise SystemExit("Loaded domain shapefile but it contains zero features. Wrong file?")
    if gdf.crs is None:
        raise SystemExit(
            "Domain shapefile has no CRS (.prj missing or unreadable). "
            "Fix that first; the site overlay depends on it."
        )

    columns = [c for c in gdf.columns if c != "geometry"]
    id_col = id_field or _pick_column(columns, ("DomainID", "domain_id", "domain"))
    if id_col is None or id_col not in gdf.columns:
        raise SystemExit(
            "Couldn't find the domain id column. Pass --domain-field explicitly.\n"
            f"Columns: {columns}"
        )
    name_col = name_field or _pick_column(columns, ("DomainName", "domain_name", "name"))

    out = gdf.copy()
    out["domainID"] = out[id_col].apply(normalize_domain_id)
    out["domainName"] = out[name_col].astype(str) if name_col else ""

    bad = out["domainID"] == ""
    if bad.any():
        print(f"[REFERENCE] Dropping {int(bad.sum())} polygons with unreadable domain id")
        out = out[~bad]

    out = _make_valid(out)
    out = out[~out.geometry.is_empty & out.geometry.notna()].copy()

    # Several domains are split across disjoint polygons (islands, Alaska)
    out = out[["domainID", "domainName", "geometry"]].dissolve(
        by="domainID", as_index=False, aggfunc="first"
    )

    if target_crs:
        out = out.to_crs(target_crs)

    return out.sort_values("domainID").reset_index(drop=True)


# -----------------------------------------------------------------------------
# Field sites
# -----------------------------------------------------------------------------

def read_sites(csv: Path) -> gpd.GeoDataFrame:
    """Read a NEON field-site list into a point GeoDataFrame (EPSG:4326).

    Canonical columns: siteID, siteName, domainID, siteTypeLabel, siteType,
    latitude, longitude, elevation, geometry.
    """
    if not csv.exists():
        raise SystemExit(f"Field site CSV not found: {csv}")

    raw = pd.read_csv(csv)
    picked: Dict[str, Optional[str]] = {
        canon: _pick_column(raw.columns, aliases) for canon, aliases in SITE_COLUMNS.items()
    }
    missing = [c for c in REQUIRED_SITE_COLUMNS if picked[c] is None]
    if missing:
        raise SystemExit(
            f"Field site CSV {csv} is missing required columns {missing}.\n"
            f"Columns: {list(raw.columns)}"
        )

    df = pd.DataFrame(index=raw.index)
    for canon, col in picked.items():
        df[canon] = raw[col] if col is not None else None

    df["siteID"] = df["siteID"].astype(str).str.strip()
    df["siteName"] = df["siteName"].fillna("").astype(str)
    df["domainID"] = df["domainID"].apply(normalize_domain_id)
    df["siteTypeLabel"] = df["siteTypeLabel"].fillna("").astype(str)
    df["siteType"] = df["siteTypeLabel"].apply(classify_site_type)
    for c in ("latitude", "longitude", "elevation"):
        df[c] = pd.to_numeric(df[c], errors="coerce")

    no_xy = df["latitude"].isna() | df["longitude"].isna()
    if no_xy.any():
        print(f"[REFERENCE] Dropping {int(no_xy.sum())} sites without coordinates")
        df = df[~no_xy]

    gdf = gpd.GeoDataFrame(
        df,
        geometry=gpd.points_from_xy(df["longitude"], df["latitude"]),
        crs="EPSG:4326",
    )
    return gdf.reset_index(drop=True)


def filter_sites(
    sites: gpd.GeoDataFrame,
    *,
    site_type: Optional[str] = None,
    domains: Optional[List[str]] = None,
) -> gpd.GeoDataFrame:
    """Subset sites by type ("terrestrial"/"aquatic") and/or domain codes."""
    out = sites
    if site_type:
        kind = classify_site_type(site_type)
        if not kind:
            raise ValueError(f"Unknown site type {site_type!r}; expected one of {SITE_TYPES}")
        out = out[out["siteType"] == kind]
    if domains:
        wanted = {normalize_domain_id(d) for d in domains}
        out = out[out["domainID"].isin(wanted)]
    return out.copy()


def sites_per_domain(domains: gpd.GeoDataFrame, sites: pd.DataFrame) -> gpd.GeoDataFrame:
    """Attach an nSites count to each domain polygon (0 when none)."""
    counts = sites.groupby("domainID").size()
    out = domains.copy()
    out["nSites"] = out["domainID"].map(counts).fillna(0).astype(int)
    return out
