from __future__ import annotations

from pathlib import Path
from typing import Tuple

import numpy as np

PRESETS = ("ellipsoid", "slab", "layered")


def _grid(dimensions_mm: Tuple[float, float, float], resolution_mm: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    shape = [max(1, int(round(d / resolution_mm))) for d in dimensions_mm]
    # voxel centres, (AP, ML, DV) with DV growing ventrally
    axes = [(np.arange(n, dtype=np.float64) + 0.5) * resolution_mm for n in shape]
    return np.meshgrid(*axes, indexing="ij")


def _ellipsoid(ap, ml, dv, center, radii) -> np.ndarray:
    r = ((ap - center[0]) / radii[0]) ** 2 + ((ml - center[1]) / radii[1]) ** 2 + ((dv - center[2]) / radii[2]) ** 2
    return r


def make_annotation(
    preset: str,
    dimensions_mm: Tuple[float, float, float] = (13.2, 11.4, 8.0),
    resolution_mm: float = 0.1,
) -> np.ndarray:
    """Build a labelled (AP, ML, DV) volume; 0 is outside the brain."""
    if resolution_mm <= 0:
        raise ValueError("resolution_mm must be positive")
    preset = preset.lower()
    ap, ml, dv = _grid(dimensions_mm, resolution_mm)
    dims = np.asarray(dimensions_mm, dtype=np.float64)
    center = dims / 2.0

    if preset == "ellipsoid":
        r = _ellipsoid(ap, ml, dv, center, dims * 0.4)
        return (r <= 1.0).astype(np.int32)

    if preset == "slab":
        # tissue fills everything below a quarter of the DV extent
        return (dv >= dims[2] * 0.25).astype(np.int32)

    if preset == "layered":
        r = _ellipsoid(ap, ml, dv, center, dims * 0.4)
        labels = np.zeros(ap.shape, dtype=np.int32)
        labels[r <= 1.0] = 1
        labels[r <= 0.6] = 2
        labels[r <= 0.25] = 3
        return labels

    raise ValueError(f"Unknown synthetic atlas preset '{preset}'.")


def generate_annotation(
    preset: str,
    path: Path,
    dimensions_mm: Tuple[float, float, float] = (13.2, 11.4, 8.0),
    resolution_mm: float = 0.1,
) -> Path:
    path = Path(path)
    if path.suffix.lower() != ".npz":
        raise ValueError("Synthetic atlas volumes are written as .npz")
    data = make_annotation(preset, dimensions_mm, resolution_mm)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(path, annotation=data, resolution_mm=np.float64(resolution_mm))
    return path
