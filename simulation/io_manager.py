"""Data I/O manager — persist flux results as NumPy arrays.

Saves and loads the output of a simulation run (flux history, final flux,
sun sweep) so plots can be re-rendered without re-running the engine.
Scene layout is not persisted.

File layout under output_dir/:
    flux_history.npy   — Flux per volume per frame, shape (N_frames, N_volumes)
    final_flux.npy     — Flux after the last frame, shape (N_volumes,)
    ticks.npy          — Frame index per snapshot, shape (N_frames,)
    sun_angles.npy     — Sun tilt [deg] per snapshot, shape (N_frames,)
    volume_positions.npy — World position per volume, shape (N_volumes, 3)
    metadata.json      — Volume names, counters and run metadata (JSON)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from simulation.runner import SimulationResults

logger = logging.getLogger(__name__)


def save_results(output_dir: Path | str, results: SimulationResults) -> list[Path]:
    """Save a simulation run to disk as NumPy arrays + JSON.

    Parameters
    ----------
    output_dir : Path or str
        Output directory (created if needed).
    results : SimulationResults
        Run to persist.

    Returns
    -------
    list[Path]
        Paths to all saved files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    saved: list[Path] = []

    for name, arr in [
        ("flux_history.npy", results.history_array()),
        ("final_flux.npy", np.asarray(results.final_flux, dtype=np.float64)),
        ("ticks.npy", np.array(results.ticks, dtype=np.int64)),
        ("sun_angles.npy", np.array(results.sun_angles_deg, dtype=np.float64)),
        ("volume_positions.npy", np.asarray(results.volume_positions, dtype=np.float64)),
    ]:
        path = output_dir / name
        np.save(path, arr)
        saved.append(path)
        logger.debug("Saved %s: shape=%s, dtype=%s", name, arr.shape, arr.dtype)

    meta_path = output_dir / "metadata.json"
    meta = {
        "volume_names": list(results.volume_names),
        "requests": results.requests,
        "passes_started": results.passes_started,
        "passes_run": results.passes_run,
        **results.metadata,
    }
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(_sanitize_for_json(meta), f, indent=2, ensure_ascii=False)
    saved.append(meta_path)

    logger.info(
        "Saved %d files to %s (%d frames × %d volumes)",
        len(saved), output_dir, len(results.flux_history), len(results.volume_names),
    )
    return saved


def load_results(output_dir: Path | str) -> dict[str, np.ndarray | dict | None]:
    """Load previously saved flux results.

    Parameters
    ----------
    output_dir : Path or str
        Directory containing saved results.

    Returns
    -------
    dict
        Keys: 'flux_history', 'final_flux', 'ticks', 'sun_angles',
        'volume_positions', 'metadata'. Missing arrays are ``None``.

    Raises
    ------
    FileNotFoundError
        If the directory does not exist.
    """
    output_dir = Path(output_dir)
    if not output_dir.exists():
        raise FileNotFoundError(f"Output directory not found: {output_dir}")

    data: dict = {}
    for key, filename in [
        ("flux_history", "flux_history.npy"),
        ("final_flux", "final_flux.npy"),
        ("ticks", "ticks.npy"),
        ("sun_angles", "sun_angles.npy"),
        ("volume_positions", "volume_positions.npy"),
    ]:
        path = output_dir / filename
        if path.exists():
            data[key] = np.load(path)
            logger.debug("Loaded %s: shape=%s", key, data[key].shape)
        else:
            logger.warning("Missing file: %s", path)
            data[key] = None

    meta_path = output_dir / "metadata.json"
    if meta_path.exists():
        with open(meta_path, "r", encoding="utf-8") as f:
            data["metadata"] = json.load(f)
    else:
        data["metadata"] = {}

    logger.info("Loaded results from %s (%d keys)", output_dir, len(data))
    return data


def _sanitize_for_json(obj: object) -> object:
    """Recursively convert NumPy types to Python natives."""
    if isinstance(obj, dict):
        return {str(k): _sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize_for_json(v) for v in obj]
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    return obj
