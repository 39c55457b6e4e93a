from __future__ import annotations
from typing import Optional
import numpy as np

from ..core.rotations import LOCAL_FORWARD, LOCAL_RIGHT, LOCAL_UP, yaw_pitch_roll_matrix
from ..core.utils import as_vec3
from ..spaces import CoordinateSpace, get_space
from ..transforms import AtlasTransform, NullTransform

MIN_PITCH = 0.0
MAX_PITCH = 90.0


class ProbeInsertion:
    """Pose of one probe: AP/ML/DV position plus yaw, pitch and roll.

    ``apmldv`` lives in the *transformed* convention of ``transform`` applied
    on top of ``space``. Positions are never validated, a drag may move the
    probe outside the atlas volume. Pitch is always kept in [0, 90].
    """

    def __init__(
        self,
        apmldv=(0.0, 0.0, 0.0),
        angles=(0.0, 90.0, 0.0),
        space: Optional[CoordinateSpace] = None,
        transform: Optional[AtlasTransform] = None,
    ) -> None:
        self.space = space if space is not None else get_space("ccf")
        self.transform = transform if transform is not None else NullTransform()
        self.apmldv = apmldv
        self._yaw = 0.0
        self._pitch = 0.0
        self._roll = 0.0
        self.angles = angles

    # -- position --
    @property
    def apmldv(self) -> np.ndarray:
        return self._apmldv

    @apmldv.setter
    def apmldv(self, value) -> None:
        self._apmldv = as_vec3(value)

    @property
    def space_name(self) -> str:
        return self.space.name

    @property
    def transform_name(self) -> str:
        return self.transform.name

    # -- angles --
    @property
    def yaw(self) -> float:
        return self._yaw

    @yaw.setter
    def yaw(self, value: float) -> None:
        self._yaw = float(value)

    @property
    def pitch(self) -> float:
        return self._pitch

    @pitch.setter
    def pitch(self, value: float) -> None:
        self._pitch = float(min(max(float(value), MIN_PITCH), MAX_PITCH))

    @property
    def roll(self) -> float:
        return self._roll

    @roll.setter
    def roll(self, value: float) -> None:
        self._roll = float(value)

    # phi/theta/spin are the names the manipulator side uses
    phi = yaw
    theta = pitch
    spin = roll

    @property
    def angles(self) -> np.ndarray:
        return np.array([self._yaw, self._pitch, self._roll])

    @angles.setter
    def angles(self, value) -> None:
        vals = np.asarray(value, dtype=np.float64).reshape(-1)
        if vals.shape[0] not in (2, 3):
            raise ValueError("angles must be (yaw, pitch) or (yaw, pitch, roll)")
        self.yaw = vals[0]
        self.pitch = vals[1]
        self.roll = vals[2] if vals.shape[0] == 3 else 0.0

    # -- conversions --
    def world_to_transformed(self, coord_world) -> np.ndarray:
        return self.transform.u2t(self.space.from_world(coord_world))

    def transformed_to_world(self, coord_t) -> np.ndarray:
        return self.space.to_world(self.transform.t2u(coord_t))

    def world_to_transformed_vector(self, vec_world) -> np.ndarray:
        return self.transform.u2t_vector(self.space.from_world_vector(vec_world))

    def transformed_to_world_vector(self, vec_t) -> np.ndarray:
        return self.space.to_world_vector(self.transform.t2u_vector(vec_t))

    def position_space_u(self) -> np.ndarray:
        return self.transform.t2u(self._apmldv)

    def position_world_u(self) -> np.ndarray:
        return self.space.to_world(self.position_space_u())

    def position_world_t(self) -> np.ndarray:
        """World position of the tip anchor in the transformed world."""
        return self.world_u_to_world_t(self.position_world_u())

    def world_u_to_world_t(self, coord_world_u) -> np.ndarray:
        return self.space.to_world(self.transform.u2t(self.space.from_world(coord_world_u)))

    def world_t_to_world_u(self, coord_world_t) -> np.ndarray:
        return self.space.to_world(self.transform.t2u(self.space.from_world(coord_world_t)))

    # -- orientation --
    def rotation(self) -> np.ndarray:
        return yaw_pitch_roll_matrix(self._yaw, self._pitch, self._roll)

    def tip_axes(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(right, up, forward) unit vectors of the tip in world space."""
        R = self.rotation()
        return R @ LOCAL_RIGHT, R @ LOCAL_UP, R @ LOCAL_FORWARD

    def copy(self) -> "ProbeInsertion":
        return ProbeInsertion(self._apmldv.copy(), self.angles, self.space, self.transform)

    def __repr__(self) -> str:
        ap, ml, dv = self._apmldv
        return (
            f"ProbeInsertion(AP={ap:.3f}, ML={ml:.3f}, DV={dv:.3f}, "
            f"yaw={self._yaw:.2f}, pitch={self._pitch:.2f}, roll={self._roll:.2f}, "
            f"space={self.space_name!r}, transform={self.transform_name!r})"
        )
