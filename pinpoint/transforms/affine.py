from __future__ import annotations
from typing import Optional
import numpy as np

from ..core.rotations import rot_x, rot_y, rot_z
from ..core.utils import as_vec3, as_vec4


class AffineTransform:
    """Linear map between a coordinate space and a manipulator's raw axes.

    ``transform_to_space`` computes ``R @ (S * xyz)`` and leaves the fourth
    (depth) component untouched; ``space_to_transform`` is the exact
    inverse. The rotation usually depends on the probe angles at build
    time, so an instance must be rebuilt whenever those angles change.

    NaN components are not rejected. They flow through the matrix product
    and come out as NaN, which is what callers check for.
    """

    name = "Affine"

    def __init__(self, scaling, rotation_deg) -> None:
        self.scaling = as_vec3(scaling)
        if np.any(self.scaling == 0):
            raise ValueError("AffineTransform scaling components must be non-zero")
        self.rotation_deg = as_vec3(rotation_deg)
        rx, ry, rz = self.rotation_deg
        self._R = rot_z(rz) @ rot_y(ry) @ rot_x(rx)

    def transform_to_space(self, v) -> np.ndarray:
        v = as_vec4(v)
        out = v.copy()
        out[:3] = self._R @ (self.scaling * v[:3])
        return out

    def space_to_transform(self, v) -> np.ndarray:
        v = as_vec4(v)
        out = v.copy()
        out[:3] = (self._R.T @ v[:3]) / self.scaling
        return out

    def __repr__(self) -> str:
        return f"{type(self).__name__}(scaling={self.scaling.tolist()}, rotation_deg={self.rotation_deg.tolist()})"


class SensapexLeftTransform(AffineTransform):
    name = "Sensapex-Left"

    def __init__(self, phi: float) -> None:
        super().__init__((-1.0, 1.0, -1.0), (0.0, 0.0, phi))


class SensapexRightTransform(AffineTransform):
    """Mirror of :class:`SensapexLeftTransform` on the lateral (x) axis."""
    name = "Sensapex-Right"

    def __init__(self, phi: float) -> None:
        super().__init__((1.0, 1.0, -1.0), (0.0, 0.0, phi))


class NewScaleLeftTransform(AffineTransform):
    """New Scale rigs carry the pitch tilt in their stage axes as well."""
    name = "NewScale-Left"

    def __init__(self, phi: float, theta: float) -> None:
        super().__init__((-1.0, 1.0, -1.0), (90.0 - theta, 0.0, phi))


class NewScaleRightTransform(AffineTransform):
    name = "NewScale-Right"

    def __init__(self, phi: float, theta: float) -> None:
        super().__init__((1.0, 1.0, -1.0), (90.0 - theta, 0.0, phi))


def build_manipulator_transform(
    kind: str,
    right_handed: bool,
    phi: float,
    theta: Optional[float] = None,
) -> AffineTransform:
    kind = kind.lower()
    if kind == "sensapex":
        return SensapexRightTransform(phi) if right_handed else SensapexLeftTransform(phi)
    if kind in {"new_scale", "newscale"}:
        theta = 90.0 if theta is None else theta
        return NewScaleRightTransform(phi, theta) if right_handed else NewScaleLeftTransform(phi, theta)
    raise ValueError(f"Unsupported manipulator type: {kind}")
