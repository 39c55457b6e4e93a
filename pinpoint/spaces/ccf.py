from __future__ import annotations
import numpy as np

from ..core.utils import as_vec3
from .base import CoordinateSpace


class CCFSpace(CoordinateSpace):
    """Allen CCF atlas space in mm, ordered (AP, ML, DV).

    World origin sits at the centre of the atlas volume, so unlike the
    manipulator spaces the point maps carry a translation.
    """

    name = "CCF"

    def __init__(self, dimensions: tuple[float, float, float] = (13.2, 11.4, 8.0)) -> None:
        self.dimensions = as_vec3(dimensions)
        self._center = self.dimensions / 2.0

    def to_world(self, coord: np.ndarray) -> np.ndarray:
        ap, ml, dv = as_vec3(coord) - self._center
        return np.array([ml, -dv, -ap])

    def from_world(self, world: np.ndarray) -> np.ndarray:
        return self.from_world_vector(world) + self._center

    def to_world_vector(self, coord: np.ndarray) -> np.ndarray:
        ap, ml, dv = as_vec3(coord)
        return np.array([ml, -dv, -ap])

    def from_world_vector(self, world: np.ndarray) -> np.ndarray:
        x, y, z = as_vec3(world)
        return np.array([-z, x, -y])
