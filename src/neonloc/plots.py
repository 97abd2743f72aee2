#!/usr/bin/env python3
"""neonloc.plots

Diagnostic plots for NEON geolocation data.

Every function draws on a supplied Axes (or a new figure) and returns the
Axes, so plots can be combined or tested without a display. Use
save_or_show() to write a PNG or open a window.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

import matplotlib.pyplot as plt
import pandas as pd


SITE_COLORS = {
    "terrestrial": "#1b7837",
    "aquatic": "#2166ac",
}
OTHER_SITE_COLOR = "#999999"


def _axes(ax, figsize: Tuple[float, float]):
    if ax is not None:
        return ax
    _, ax = plt.subplots(figsize=figsize)
    return ax


def _require(df: pd.DataFrame, cols, what: str) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"{what} needs columns {missing}; have {list(df.columns)}")


def plot_site_map(
    domains,
    sites: Optional[pd.DataFrame] = None,
    *,
    column: Optional[str] = "nSites",
    bbox: Optional[Tuple[float, float, float, float]] = None,
    title: str = "NEON domains and field sites",
    ax=None,
):
    """Choropleth of domain polygons with field sites overlaid as points.

    Domains are shaded by `column` when present (see sites_per_domain),
    otherwise drawn as plain outlines. Sites are colored by siteType.
    """
    ax = _axes(ax, (12, 7))

    if column and column in domains.columns:
        domains.plot(
            column=column,
            cmap="Greens",
            edgecolor="grey",
            linewidth=0.5,
            legend=True,
            legend_kwds={"label": "Number of sites", "shrink": 0.6},
            ax=ax,
        )
    else:
        domains.plot(color="whitesmoke", edgecolor="grey", linewidth=0.5, ax=ax)

    if sites is not None and len(sites):
        _require(sites, ["longitude", "latitude", "siteType"], "plot_site_map")
        known = sites["siteType"].isin(list(SITE_COLORS))
        for kind, color in SITE_COLORS.items():
            subset = sites[sites["siteType"] == kind]
            if subset.empty:
                continue
            ax.scatter(
                subset["longitude"], subset["latitude"],
                c=color, label=kind, s=18, edgecolors="black", linewidth=0.3, zorder=3,
            )
        other = sites[~known]
        if not other.empty:
            ax.scatter(
                other["longitude"], other["latitude"],
                c=OTHER_SITE_COLOR, label="other", s=18, edgecolors="black", linewidth=0.3, zorder=3,
            )
        ax.legend(title="Site type", loc="lower left", framealpha=0.9)

    if bbox:
        ax.set_xlim(bbox[0], bbox[2])
        ax.set_ylim(bbox[1], bbox[3])

    ax.set_xlabel("Longitude")
    ax.set_ylabel("Latitude")
    ax.set_title(title)
    return ax


def plot_trap_positions(
    data: pd.DataFrame,
    *,
    color_by: Optional[str] = "trapStatus",
    x: str = "adjEasting",
    y: str = "adjNorthing",
    title: Optional[str] = None,
    ax=None,
):
    """Scatter of refined trap positions, one color per `color_by` value."""
    _require(data, [x, y], "plot_trap_positions")
    ax = _axes(ax, (9, 8))

    pts = data.dropna(subset=[x, y])
    if color_by and color_by in pts.columns:
        for value, grp in pts.groupby(color_by, sort=True):
            ax.scatter(grp[x], grp[y], label=str(value), s=16, alpha=0.8)
        ax.legend(title=color_by, fontsize="small", loc="best")
    else:
        ax.scatter(pts[x], pts[y], s=16, alpha=0.8)

    if title is None:
        plots = sorted(pts["plotID"].dropna().unique()) if "plotID" in pts.columns else []
        title = f"Trap positions ({', '.join(plots)})" if 0 < len(plots) <= 3 else "Trap positions"
    ax.set_xlabel(f"{x} (m)")
    ax.set_ylabel(f"{y} (m)")
    ax.set_title(title)
    ax.set_aspect("equal", adjustable="datalim")
    ax.grid(True, alpha=0.3)
    return ax


def plot_vertical_profile(
    profile: pd.DataFrame,
    value_col: str,
    *,
    depth_col: str = "zOffset",
    units: str = "",
    title: str = "Vertical profile",
    ax=None,
):
    """Line plot of a value against sensor height/depth (zOffset in m)."""
    _require(profile, [value_col, depth_col], "plot_vertical_profile")
    ax = _axes(ax, (5, 7))

    ax.plot(profile[value_col], profile[depth_col], marker="o")
    ax.set_xlabel(f"{value_col} ({units})" if units else value_col)
    ax.set_ylabel(f"{depth_col} (m)")
    ax.set_title(title)
    ax.grid(True, alpha=0.3)
    return ax


def plot_sensor_timeseries(
    joined: pd.DataFrame,
    value_col: str,
    *,
    by: str = "zOffset",
    time_col: str = "startDateTime",
    units: str = "",
    ax=None,
):
    """One line per sensor position (grouped by `by`) over time."""
    _require(joined, [value_col, by, time_col], "plot_sensor_timeseries")
    ax = _axes(ax, (12, 5))

    for key, grp in joined.sort_values(time_col).groupby(by, sort=True):
        ax.plot(grp[time_col], grp[value_col], label=f"{key} m" if by == "zOffset" else str(key), linewidth=1)
    ax.legend(title=by, fontsize="small", loc="best")
    ax.set_xlabel(time_col)
    ax.set_ylabel(f"{value_col} ({units})" if units else value_col)
    ax.figure.autofmt_xdate()
    ax.grid(True, alpha=0.3)
    return ax


def save_or_show(ax, out: Optional[Path] = None) -> None:
    """Write the figure owning `ax` to `out` (PNG), or show it interactively."""
    fig = ax.figure
    fig.tight_layout()
    if out is None:
        plt.show()
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out, dpi=150, bbox_inches="tight")
    plt.close(fig)
    print(f"Wrote figure -> {out}")
