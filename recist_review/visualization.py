"""Visualization utilities for the RECIST review.

This module provides plotting functions for:
1. Timeline charts - visits per subject with baseline and response markers
2. Spider charts - percent change from baseline per subject with RECIST bands
3. Site reports - both charts side by side, one image per clinical site
"""

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import pandas as pd
import seaborn as sns
import matplotlib.pyplot as plt
from matplotlib.lines import Line2D

from recist_review.recist import RECISTThresholds
from recist_review.types import (
    BASELINE_MARKERS,
    RESPONSE_COLORS,
    RESPONSE_MARKERS,
    ResponseCategory,
)

logger = logging.getLogger(__name__)

NEW_LESION_STYLE = {"marker": "|", "color": "#8C564B", "s": 250, "linewidths": 3}

# Plot style configuration
plt.rcParams.update({
    "font.size": 11,
    "axes.labelsize": 11,
    "axes.titlesize": 13,
    "xtick.labelsize": 9,
    "ytick.labelsize": 9,
    "legend.fontsize": 9,
    "figure.dpi": 100,
    "figure.facecolor": "white",
    "axes.facecolor": "white",
    "axes.grid": True,
    "grid.alpha": 0.3,
})


def _subject_order(df: pd.DataFrame) -> list[str]:
    return sorted(df["subject"].dropna().unique().tolist())


def plot_timeline(
    df: pd.DataFrame,
    title: str = "Tumor Assessments",
    ax: Optional[plt.Axes] = None,
    show_legend: bool = True,
) -> plt.Axes:
    """Plot one horizontal line per subject across tumor assessments.

    Baseline disease status is drawn at event 0, each response category at
    the visit carried in its ``<code>_this_ta`` column, and a first new
    lesion at its visit.

    Args:
        df: Derived assessments for one site
        title: Plot title
        ax: Matplotlib axes (creates new figure if None)
        show_legend: Whether to show legend

    Returns:
        Matplotlib axes object
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(8, 6))

    subjects = _subject_order(df)
    y_of = {s: i for i, s in enumerate(subjects)}
    y = df["subject"].map(y_of)

    for subject in subjects:
        events = df.loc[df["subject"] == subject, "event_num"].dropna().astype(float).sort_values()
        ax.plot(events, np.full(len(events), y_of[subject]), color="grey", linewidth=1.5, zorder=1)

    # Baseline status
    for column, style in BASELINE_MARKERS.items():
        if column not in df.columns:
            continue
        mask = df[column].notna()
        ax.scatter(
            df.loc[mask, column].astype(float), y[mask],
            marker=style["marker"], facecolors=style["facecolor"], edgecolors="black",
            s=80, zorder=3,
        )

    # Response categories at their visits
    for category in ResponseCategory.all():
        mask = df[category.marker_column].notna()
        if not mask.any():
            continue
        ax.scatter(
            df.loc[mask, category.marker_column].astype(float), y[mask],
            marker=RESPONSE_MARKERS[category], c=RESPONSE_COLORS[category],
            s=90, edgecolors="white", linewidths=0.5, zorder=4,
        )

    # First new lesion
    if "new_lesions" in df.columns:
        mask = df["new_lesions"] == "Yes"
        if mask.any():
            ax.scatter(df.loc[mask, "event_num"].astype(float), y[mask], zorder=5, **NEW_LESION_STYLE)

    ax.set_yticks(range(len(subjects)))
    ax.set_yticklabels(subjects)
    ax.invert_yaxis()
    ax.set_xlabel("Tumor assessment (event)")
    ax.set_title(title)

    if show_legend:
        ax.legend(handles=_timeline_legend_handles(), loc="upper left",
                  bbox_to_anchor=(1.01, 1.0), framealpha=0.9)

    return ax


def _timeline_legend_handles() -> list[Line2D]:
    handles = [
        Line2D([], [], linestyle="none", marker=style["marker"], markerfacecolor=style["facecolor"],
               markeredgecolor="black", markersize=8, label=style["label"])
        for style in BASELINE_MARKERS.values()
    ]
    handles.extend(
        Line2D([], [], linestyle="none", marker=RESPONSE_MARKERS[c], color=RESPONSE_COLORS[c],
               markersize=9, label=c.value)
        for c in ResponseCategory.all()
    )
    handles.append(
        Line2D([], [], linestyle="none", marker=NEW_LESION_STYLE["marker"],
               color=NEW_LESION_STYLE["color"], markersize=12, markeredgewidth=3, label="New lesion")
    )
    return handles


def plot_spider(
    df: pd.DataFrame,
    thresholds: RECISTThresholds = RECISTThresholds(),
    title: str = "Change in Sum of Diameters",
    ax: Optional[plt.Axes] = None,
    show_legend: bool = True,
) -> plt.Axes:
    """Plot percent change from baseline per subject with RECIST bands.

    Shaded bands mark the progression zone above ``pd_percent`` and the
    response zone below ``pr_percent``.

    Args:
        df: Derived assessments for one site
        thresholds: RECIST thresholds used for the reference bands
        title: Plot title
        ax: Matplotlib axes (creates new figure if None)
        show_legend: Whether to show legend

    Returns:
        Matplotlib axes object
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(8, 6))

    data = df.loc[df["percent_change_from_baseline"].notna(),
                  ["subject", "event_num", "percent_change_from_baseline"]].copy()
    data["event_num"] = data["event_num"].astype(float)

    values = data["percent_change_from_baseline"]
    lower = min(-100.0, values.min() if len(values) else 0.0) - 10
    upper = max(thresholds.pd_percent * 2, values.max() if len(values) else 0.0) + 10

    ax.axhspan(thresholds.pd_percent, upper, color=RESPONSE_COLORS[ResponseCategory.PD], alpha=0.1, zorder=0)
    ax.axhspan(lower, thresholds.pr_percent, color=RESPONSE_COLORS[ResponseCategory.PR], alpha=0.1, zorder=0)
    ax.axhline(thresholds.pd_percent, color=RESPONSE_COLORS[ResponseCategory.PD], linestyle="--", linewidth=1)
    ax.axhline(thresholds.pr_percent, color=RESPONSE_COLORS[ResponseCategory.PR], linestyle="--", linewidth=1)
    ax.axhline(0, color="black", linewidth=0.5)

    if len(data):
        sns.lineplot(
            data=data, x="event_num", y="percent_change_from_baseline",
            hue="subject", hue_order=_subject_order(data),
            marker="o", estimator=None, sort=True, ax=ax, legend="auto" if show_legend else False,
        )
        if show_legend:
            ax.legend(title="Subject", loc="upper left", bbox_to_anchor=(1.01, 1.0), framealpha=0.9)
    else:
        ax.text(0.5, 0.5, "No measurable disease", transform=ax.transAxes,
                ha="center", va="center", color="grey")

    ax.set_ylim(lower, upper)
    ax.set_xlabel("Tumor assessment (event)")
    ax.set_ylabel("% change from baseline SLD")
    ax.set_title(title)

    return ax


def plot_site_report(
    df: pd.DataFrame,
    site: str,
    thresholds: RECISTThresholds = RECISTThresholds(),
    save_path: Optional[Union[str, Path]] = None,
    dpi: int = 150,
) -> plt.Figure:
    """Timeline and spider chart for one site, side by side.

    Args:
        df: Derived assessments (all sites; filtered here)
        site: Site code to plot
        thresholds: RECIST thresholds for the spider chart bands
        save_path: Optional path to save figure
        dpi: Resolution of the saved image

    Returns:
        Matplotlib figure
    """
    site_df = df[df["site"] == site]
    n_subjects = max(site_df["subject"].nunique(), 1)

    fig, (ax_timeline, ax_spider) = plt.subplots(
        1, 2, figsize=(16, max(5, 0.45 * n_subjects + 2))
    )
    plot_timeline(site_df, title="Tumor Assessments", ax=ax_timeline)
    plot_spider(site_df, thresholds=thresholds, title="Change in Sum of Diameters", ax=ax_spider)
    fig.suptitle(f"Site {site} ({n_subjects} subjects)", fontweight="bold")
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, bbox_inches="tight", dpi=dpi)

    return fig


def render_site_reports(
    df: pd.DataFrame,
    output_dir: Union[str, Path],
    thresholds: RECISTThresholds = RECISTThresholds(),
    dpi: int = 150,
) -> dict[str, str]:
    """Write one combined figure per site.

    Args:
        df: Derived assessments
        output_dir: Directory for the images (created if needed)
        thresholds: RECIST thresholds for the spider chart bands
        dpi: Resolution of the saved images

    Returns:
        Dictionary mapping site code -> image path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = {}
    for site in sorted(df["site"].dropna().unique()):
        path = output_dir / f"site_{site}.png"
        fig = plot_site_report(df, site, thresholds=thresholds, save_path=path, dpi=dpi)
        plt.close(fig)
        paths[site] = str(path)
        logger.info(f"Saved site report: {path}")

    return paths
