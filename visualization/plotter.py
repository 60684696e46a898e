"""Visualization module for flux results.

Generates figures using matplotlib:
- Flux per volume (bar chart coloured by LOW / MEDIUM / HIGH level)
- Plan view of the volumes coloured by flux
- Flux history of every volume over the sun sweep
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend for headless rendering

import matplotlib.pyplot as plt
import numpy as np

from core_engine.flux_volume import FluxLevel, classify_flux

if TYPE_CHECKING:
    from simulation.runner import SimulationResults

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Color Configuration
# ---------------------------------------------------------------------------

LEVEL_COLORS = {
    FluxLevel.LOW: "#ff6b6b",
    FluxLevel.MEDIUM: "#ffd43b",
    FluxLevel.HIGH: "#51cf66",
}
_FLUX_CMAP = "viridis"
_BACKGROUND = "#1a1a2e"
_DPI = 150


def _style_axes(fig: plt.Figure, ax: plt.Axes, title: str) -> None:
    ax.set_title(title, fontsize=14, fontweight="bold", color="white")
    ax.tick_params(colors="white")
    ax.xaxis.label.set_color("white")
    ax.yaxis.label.set_color("white")
    for spine in ax.spines.values():
        spine.set_edgecolor("#444")


def _save(fig: plt.Figure, output_path: Path | str | None, dpi: int, label: str) -> None:
    fig.tight_layout()
    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=dpi, facecolor=fig.get_facecolor())
        logger.info("%s saved: %s", label, output_path)
    plt.close(fig)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def plot_flux_levels(
    volume_names: list[str],
    flux: np.ndarray,
    low_threshold: float = 40.0,
    high_threshold: float = 60.0,
    title: str = "Flux per Volume",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Bar chart of the flux of every volume, coloured by flux level.

    Parameters
    ----------
    volume_names : list[str]
        Bar labels.
    flux : np.ndarray
        Flux per volume. Shape: (N,).
    low_threshold, high_threshold : float
        Level thresholds, drawn as dashed lines.
    title : str
        Figure title.
    output_path : Path or str, optional
        If provided, save figure to this path.
    dpi : int
        Figure resolution.

    Returns
    -------
    matplotlib.figure.Figure
        The generated figure.
    """
    flux = np.asarray(flux, dtype=np.float64)
    colors = [
        LEVEL_COLORS[classify_flux(v, low_threshold, high_threshold)] for v in flux
    ]

    fig, ax = plt.subplots(1, 1, figsize=(max(6, 0.5 * len(flux) + 2), 5), facecolor=_BACKGROUND)
    ax.set_facecolor(_BACKGROUND)

    positions = np.arange(len(flux))
    ax.bar(positions, flux, color=colors, edgecolor="none")
    ax.axhline(low_threshold, color="#aaa", linestyle="--", linewidth=0.8)
    ax.axhline(high_threshold, color="#aaa", linestyle="--", linewidth=0.8)

    ax.set_xticks(positions)
    ax.set_xticklabels(volume_names, rotation=60, ha="right", fontsize=8)
    ax.set_ylabel("Flux")
    _style_axes(fig, ax, title)

    _save(fig, output_path, dpi, "Flux level chart")
    return fig


def plot_flux_map(
    positions: np.ndarray,
    flux: np.ndarray,
    title: str = "Flux Plan View",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Top-down (X/Z) scatter of volume positions coloured by flux.

    Parameters
    ----------
    positions : np.ndarray
        Volume world positions. Shape: (N, 3).
    flux : np.ndarray
        Flux per volume. Shape: (N,).
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    fig, ax = plt.subplots(1, 1, figsize=(8, 7), facecolor=_BACKGROUND)
    ax.set_facecolor(_BACKGROUND)

    scatter = ax.scatter(
        positions[:, 0], positions[:, 2],
        c=flux,
        cmap=_FLUX_CMAP,
        s=200,
        marker="s",
        edgecolors="white",
        linewidths=0.5,
    )
    cbar = fig.colorbar(scatter, ax=ax, label="Flux", shrink=0.8)
    cbar.ax.yaxis.label.set_color("white")
    cbar.ax.tick_params(colors="white")

    ax.set_xlabel("X")
    ax.set_ylabel("Z")
    ax.set_aspect("equal")
    ax.invert_yaxis()
    _style_axes(fig, ax, title)

    _save(fig, output_path, dpi, "Flux map")
    return fig


def plot_flux_history(
    sun_angles_deg: np.ndarray | list[float],
    history: np.ndarray,
    volume_names: list[str],
    title: str = "Flux vs. Sun Angle",
    output_path: Path | str | None = None,
    max_lines: int = 12,
    dpi: int = _DPI,
) -> plt.Figure:
    """Flux of each volume over the sun sweep, plus the scene mean.

    Parameters
    ----------
    sun_angles_deg : array-like
        Sun tilt per snapshot [deg].
    history : np.ndarray
        Flux history. Shape: (N_frames, N_volumes).
    volume_names : list[str]
        Legend labels.
    max_lines : int
        Volumes beyond this count are only included in the mean.
    """
    history = np.asarray(history, dtype=np.float64)
    fig, ax = plt.subplots(1, 1, figsize=(12, 6), facecolor="#0f0f1a")
    ax.set_facecolor("#0f0f1a")

    cmap = plt.get_cmap("tab20")
    if history.size:
        for i, name in enumerate(volume_names[:max_lines]):
            ax.plot(sun_angles_deg, history[:, i], label=name,
                    color=cmap(i % 20), linewidth=1.2, alpha=0.8)
        ax.plot(sun_angles_deg, history.mean(axis=1), label="mean",
                color="white", linewidth=2.5)

    ax.set_xlabel("Sun angle [°]", fontsize=12)
    ax.set_ylabel("Flux", fontsize=12)
    ax.grid(True, alpha=0.2, color="white")
    _style_axes(fig, ax, title)

    if history.size:
        legend = ax.legend(facecolor=_BACKGROUND, edgecolor="#444", fontsize=8, ncol=2)
        for text in legend.get_texts():
            text.set_color("white")

    _save(fig, output_path, dpi, "Flux history")
    return fig


def generate_all_plots(
    results: SimulationResults,
    output_dir: Path | str = "output",
    dpi: int = _DPI,
) -> list[Path]:
    """Generate all standard plots from simulation results.

    Parameters
    ----------
    results : SimulationResults
        Full simulation results.
    output_dir : Path or str
        Directory for output plots.
    dpi : int
        Figure resolution.

    Returns
    -------
    list[Path]
        Paths to all generated plot files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    saved: list[Path] = []

    if not results.flux_history:
        logger.warning("No flux snapshots to plot")
        return saved

    low = results.metadata.get("low_threshold", 40.0)
    high = results.metadata.get("high_threshold", 60.0)

    # 1. Final flux per volume
    p = output_dir / "flux_levels.png"
    plot_flux_levels(
        results.volume_names,
        results.final_flux,
        low_threshold=low,
        high_threshold=high,
        title="Final Flux per Volume",
        output_path=p,
        dpi=dpi,
    )
    saved.append(p)

    # 2. Plan view
    if len(results.volume_positions):
        p = output_dir / "flux_map.png"
        plot_flux_map(
            results.volume_positions,
            results.final_flux,
            title="Final Flux Plan View",
            output_path=p,
            dpi=dpi,
        )
        saved.append(p)

    # 3. History over the sun sweep
    p = output_dir / "flux_history.png"
    plot_flux_history(
        results.sun_angles_deg,
        results.history_array(),
        results.volume_names,
        output_path=p,
        dpi=dpi,
    )
    saved.append(p)

    logger.info("Generated %d plots in %s", len(saved), output_dir)
    return saved
