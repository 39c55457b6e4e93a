from __future__ import annotations
from abc import ABC, abstractmethod
import numpy as np


class CoordinateSpace(ABC):
    """A named 3D space with maps to and from the canonical world space.

    Points and free vectors have separate entry points: a space may use an
    axis permutation together with a translation, and the vector maps must
    drop the translation rather than fake it with a zero origin.
    """

    name: str = ""
    dimensions: np.ndarray = np.zeros(3)

    @abstractmethod
    def to_world(self, coord: np.ndarray) -> np.ndarray: ...

    @abstractmethod
    def from_world(self, world: np.ndarray) -> np.ndarray: ...

    @abstractmethod
    def to_world_vector(self, coord: np.ndarray) -> np.ndarray: ...

    @abstractmethod
    def from_world_vector(self, world: np.ndarray) -> np.ndarray: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
