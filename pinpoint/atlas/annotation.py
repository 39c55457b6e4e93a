from __future__ import annotations
from pathlib import Path
from typing import Optional
import numpy as np

from ..core.utils import as_vec3, get_logger, normalized
from ..spaces import CCFSpace, CoordinateSpace

_log = get_logger()


class AnnotationDataset:
    """Labelled atlas volume used to find the brain surface.

    ``data`` is indexed (AP, ML, DV); label 0 means outside the brain. Space
    coordinates are millimetres from the volume corner, so voxel ``i`` along
    an axis spans ``[i * resolution, (i + 1) * resolution)``.
    """

    def __init__(
        self,
        data: np.ndarray,
        resolution_mm: float,
        space: Optional[CoordinateSpace] = None,
    ) -> None:
        data = np.asarray(data)
        if data.ndim != 3:
            raise ValueError(f"Annotation volume must be 3D, got shape {data.shape}")
        if resolution_mm <= 0:
            raise ValueError("resolution_mm must be positive")
        self.data = data.astype(np.int32, copy=False)
        self.resolution_mm = float(resolution_mm)
        self.dimensions = np.asarray(self.data.shape, dtype=np.float64) * self.resolution_mm
        self.coordinate_space = space if space is not None else CCFSpace(tuple(self.dimensions))

    def _labels(self, pts: np.ndarray) -> np.ndarray:
        pts = np.atleast_2d(np.asarray(pts, dtype=np.float64))
        labels = np.zeros(pts.shape[0], dtype=np.int32)
        finite = np.all(np.isfinite(pts), axis=1)
        idx = np.zeros(pts.shape, dtype=np.int64)
        idx[finite] = np.floor(pts[finite] / self.resolution_mm).astype(np.int64)
        shape = np.asarray(self.data.shape)
        valid = finite & np.all((idx >= 0) & (idx < shape), axis=1)
        if np.any(valid):
            v = idx[valid]
            labels[valid] = self.data[v[:, 0], v[:, 1], v[:, 2]]
        return labels

    def annotation_at(self, space_point) -> int:
        return int(self._labels(as_vec3(space_point))[0])

    def is_in_brain(self, space_point) -> bool:
        return self.annotation_at(space_point) > 0

    def find_surface_coordinate(self, space_point, space_direction) -> np.ndarray:
        """March from ``space_point`` along ``space_direction`` to the surface.

        Returns the last in-tissue sample before the ray first leaves tissue
        (entering it first when the start is outside). Leaving the volume
        counts as leaving tissue. Returns a NaN vector when the ray never
        reaches tissue.
        """
        origin = as_vec3(space_point)
        direction = normalized(as_vec3(space_direction))
        if not (np.all(np.isfinite(origin)) and np.all(np.isfinite(direction))):
            return np.full(3, np.nan)

        # Long enough to cross the whole volume from any start within reach.
        reach = float(np.linalg.norm(self.dimensions)) + float(np.linalg.norm(origin - self.dimensions / 2.0))
        n_steps = int(np.ceil(reach / self.resolution_mm)) + 2
        ts = np.arange(n_steps, dtype=np.float64) * self.resolution_mm
        pts = origin[None, :] + ts[:, None] * direction[None, :]
        inside = self._labels(pts) > 0

        if not np.any(inside):
            return np.full(3, np.nan)
        first = int(np.argmax(inside))
        remaining = inside[first:]
        if np.all(remaining):
            return np.full(3, np.nan)
        exit_rel = int(np.argmin(remaining))
        return pts[first + exit_rel - 1].copy()


def load_annotation(path: str | Path, resolution_mm: Optional[float] = None) -> AnnotationDataset:
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".npz":
        with np.load(path) as archive:
            data = archive["annotation"]
            if resolution_mm is None and "resolution_mm" in archive.files:
                resolution_mm = float(archive["resolution_mm"])
    elif suffix == ".npy":
        data = np.load(path)
    else:
        raise ValueError(f"Unsupported annotation file '{suffix}'")
    if resolution_mm is None:
        raise ValueError(f"No resolution stored in {path.name}; pass resolution_mm")
    _log.info("Loaded annotation volume %s with shape %s", path.name, tuple(data.shape))
    return AnnotationDataset(data, resolution_mm)
