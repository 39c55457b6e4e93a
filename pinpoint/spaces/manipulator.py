from __future__ import annotations
import numpy as np

from ..core.utils import as_vec3
from .base import CoordinateSpace


class SensapexSpace(CoordinateSpace):
    """Sensapex manipulator space. Pure axis swap, no translation."""

    name = "Sensapex"
    dimensions = np.array([20.0, 20.0, 20.0])

    def to_world(self, coord: np.ndarray) -> np.ndarray:
        x, y, z = as_vec3(coord)
        return np.array([y, -z, -x])

    def from_world(self, world: np.ndarray) -> np.ndarray:
        x, y, z = as_vec3(world)
        return np.array([-z, x, -y])

    def to_world_vector(self, coord: np.ndarray) -> np.ndarray:
        return self.to_world(coord)

    def from_world_vector(self, world: np.ndarray) -> np.ndarray:
        return self.from_world(world)


class NewScaleSpace(CoordinateSpace):
    """New Scale manipulator space. Pure axis swap, no translation."""

    name = "NewScale"
    dimensions = np.array([15.0, 15.0, 15.0])

    def to_world(self, coord: np.ndarray) -> np.ndarray:
        x, y, z = as_vec3(coord)
        return np.array([-x, -z, y])

    def from_world(self, world: np.ndarray) -> np.ndarray:
        x, y, z = as_vec3(world)
        return np.array([-x, z, -y])

    def to_world_vector(self, coord: np.ndarray) -> np.ndarray:
        return self.to_world(coord)

    def from_world_vector(self, world: np.ndarray) -> np.ndarray:
        return self.from_world(world)
