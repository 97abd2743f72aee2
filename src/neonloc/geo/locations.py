#!/usr/bin/env python3
"""locations.py

Client for the NEON named-location endpoint:

    GET {base_url}/locations/{locationName}

Every plot, trap, bird point and tower level in NEON has a named location
(e.g. "NIWO_004.mammalGrid.mam" for a trapping grid). The endpoint returns
its surveyed coordinates; uncertainties are buried in locationProperties.

Unknown names come back as HTTP 400/404 (or an "errors" payload) and map to
None so callers can fall back to a coarser location. Any other HTTP error
propagates.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from neonloc.config import DEFAULT_API_BASE_URL


COORD_UNCERTAINTY = "Value for Coordinate uncertainty"
ELEV_UNCERTAINTY = "Value for Elevation uncertainty"


@dataclass(frozen=True)
class Location:
    name: str
    latitude: Optional[float]
    longitude: Optional[float]
    elevation: Optional[float]
    easting: Optional[float]
    northing: Optional[float]
    utm_zone: Optional[int]
    hemisphere: str
    coordinate_uncertainty: Optional[float]
    elevation_uncertainty: Optional[float]

    @property
    def epsg(self) -> Optional[int]:
        if self.utm_zone is None:
            return None
        return utm_epsg(self.utm_zone, self.hemisphere)


def utm_epsg(zone: int, hemisphere: str = "N") -> int:
    """WGS84 / UTM EPSG code: 326zz north, 327zz south."""
    zone = int(zone)
    if not 1 <= zone <= 60:
        raise ValueError(f"UTM zone out of range: {zone}")
    return (32700 if str(hemisphere).upper().startswith("S") else 32600) + zone


def _float(x: Any) -> Optional[float]:
    if x is None or x == "":
        return None
    try:
        return float(x)
    except (TypeError, ValueError):
        return None


def _zone(x: Any) -> Optional[int]:
    # Zone sometimes arrives as "13" or "13N"
    if x is None:
        return None
    digits = "".join(ch for ch in str(x) if ch.isdigit())
    return int(digits) if digits else None


def parse_location(data: Dict[str, Any]) -> Location:
    """Flatten one `data` block from the locations endpoint."""
    props = {}
    for p in data.get("locationProperties") or []:
        if isinstance(p, dict) and "locationPropertyName" in p:
            props[p["locationPropertyName"]] = p.get("locationPropertyValue")

    return Location(
        name=str(data.get("locationName", "")),
        latitude=_float(data.get("locationDecimalLatitude")),
        longitude=_float(data.get("locationDecimalLongitude")),
        elevation=_float(data.get("locationElevation")),
        easting=_float(data.get("locationUtmEasting")),
        northing=_float(data.get("locationUtmNorthing")),
        utm_zone=_zone(data.get("locationUtmZone")),
        hemisphere=str(data.get("locationUtmHemisphere") or "N"),
        coordinate_uncertainty=_float(props.get(COORD_UNCERTAINTY)),
        elevation_uncertainty=_float(props.get(ELEV_UNCERTAINTY)),
    )


class LocationClient:
    """Cached lookups against the NEON locations endpoint."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        token: Optional[str] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers["X-API-Token"] = token
        self._cache: Dict[str, Optional[Location]] = {}

    def fetch(self, name: str) -> Optional[Dict[str, Any]]:
        """Raw `data` block for a named location, or None if unknown."""
        url = f"{self.base_url}/locations/{quote(name, safe='._-')}"
        r = self.session.get(url, timeout=self.timeout)
        if r.status_code in (400, 404):
            return None
        r.raise_for_status()
        payload = r.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data:
            return None
        return data

    def get(self, name: str) -> Optional[Location]:
        name = str(name).strip()
        if not name:
            return None
        if name not in self._cache:
            data = self.fetch(name)
            self._cache[name] = parse_location(data) if data is not None else None
        return self._cache[name]

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "LocationClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
