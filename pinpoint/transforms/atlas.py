from __future__ import annotations
import numpy as np

from ..core.rotations import rot_y
from ..core.utils import as_vec3


class AtlasTransform:
    """Maps untransformed space coordinates (U) to transformed ones (T).

    The base class is the identity; subclasses override the four maps.
    """

    name = "Null"
    prefix = ""

    def u2t(self, coord) -> np.ndarray:
        return as_vec3(coord)

    def t2u(self, coord) -> np.ndarray:
        return as_vec3(coord)

    def u2t_vector(self, vec) -> np.ndarray:
        return as_vec3(vec)

    def t2u_vector(self, vec) -> np.ndarray:
        return as_vec3(vec)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class NullTransform(AtlasTransform):
    pass


class LinearAtlasTransform(AtlasTransform):
    """Per-axis scaling plus a tilt about the ML axis, around an origin.

    Coordinates are (AP, ML, DV); the ML axis is the second component, so
    the tilt is a rotation about y in that ordering. ``u2t`` computes
    ``R @ (S * (u - origin))`` and ``t2u`` inverts it.
    """

    def __init__(self, name: str, scaling=(1.0, 1.0, 1.0), tilt_deg: float = 0.0, origin=(0.0, 0.0, 0.0), prefix: str = "") -> None:
        self.name = name
        self.prefix = prefix
        self.scaling = as_vec3(scaling)
        if np.any(self.scaling == 0):
            raise ValueError("LinearAtlasTransform scaling components must be non-zero")
        self.tilt_deg = float(tilt_deg)
        self.origin = as_vec3(origin)
        self._R = rot_y(self.tilt_deg)

    def u2t(self, coord) -> np.ndarray:
        return self.u2t_vector(as_vec3(coord) - self.origin)

    def t2u(self, coord) -> np.ndarray:
        return self.t2u_vector(coord) + self.origin

    def u2t_vector(self, vec) -> np.ndarray:
        return self._R @ (self.scaling * as_vec3(vec))

    def t2u_vector(self, vec) -> np.ndarray:
        return (self._R.T @ as_vec3(vec)) / self.scaling


def get_atlas_transform(name: str = "null", **params) -> AtlasTransform:
    key = name.strip().lower()
    if key in {"null", "none", ""}:
        return NullTransform()
    if key == "linear":
        label = params.pop("label", name)
        return LinearAtlasTransform(label, **params)
    raise ValueError(f"Unknown atlas transform '{name}'")
