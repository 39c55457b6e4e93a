from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, List, Optional
import numpy as np

from ..core.utils import as_vec3, as_vec4, get_logger, normalized
from .insertion import ProbeInsertion

_log = get_logger()

DEFAULT_START = (0.0, 0.0, 0.0)
DEFAULT_ANGLES = (0.0, 90.0, 0.0)


@dataclass
class TipFrame:
    """Tip position and axes in untransformed world space."""
    coord: np.ndarray
    right: np.ndarray
    up: np.ndarray
    forward: np.ndarray


@dataclass
class SurfaceState:
    in_brain: bool = False
    depth_t: float = 0.0
    surface_world: np.ndarray = field(default_factory=lambda: np.full(3, np.nan))


PoseListener = Callable[["ProbeController"], None]


class ProbeController:
    """Owns a probe's insertion and turns edits into pose updates.

    Keyboard-style edits (``move_xyzd``/``move_ypr``) only mark the pose as
    pending; ``tick`` applies it once per step. Direct setters apply
    immediately. While locked, manual edits are ignored so an external
    driver (a manipulator binding) owns the pose, unless manual control
    sends them to that manipulator.
    """

    def __init__(self, insertion: Optional[ProbeInsertion] = None, dataset=None) -> None:
        self.insertion = insertion if insertion is not None else ProbeInsertion(DEFAULT_START, DEFAULT_ANGLES)
        self.dataset = dataset
        self.unlocked_dir = np.ones(4)
        self.unlocked_rot = np.ones(3)
        self.surface = SurfaceState()
        self.tip_position_world_t = np.zeros(3)
        self._locked = False
        self._depth = 0.0
        self._dirty = False
        self._listeners: List[PoseListener] = []
        self.manual_control = False
        self.manipulator_binding = None
        self.manipulator_move_in_progress = False
        self._recompute()

    # -- lock --
    @property
    def locked(self) -> bool:
        return self._locked

    def set_controller_lock(self, locked: bool) -> None:
        self._locked = bool(locked)
        fill = 0.0 if self._locked else 1.0
        self.unlocked_dir = np.full(4, fill)
        self.unlocked_rot = np.full(3, fill)

    def toggle_controller_lock(self) -> None:
        self.set_controller_lock(not self._locked)

    # -- manipulator manual control --
    def attach_manipulator(self, binding) -> None:
        """Route manual moves to ``binding`` while :attr:`manual_control` is set."""
        self.manipulator_binding = binding
        self.manipulator_move_in_progress = False

    def detach_manipulator(self) -> None:
        self.manipulator_binding = None
        self.manipulator_move_in_progress = False

    def _move_manipulator(self, delta: np.ndarray) -> bool:
        # Further input is dropped until the hardware acknowledges the move.
        if self.manipulator_move_in_progress:
            return False
        binding = self.manipulator_binding
        self.manipulator_move_in_progress = True

        def done(_=None) -> None:
            if binding is self.manipulator_binding:
                self.manipulator_move_in_progress = False

        def then_depth(_) -> None:
            if binding is self.manipulator_binding:
                binding.move_depth_by_world_space_delta(delta[3], done, done)

        has_xyz = bool(np.any(delta[:3]))
        if delta[3] != 0.0 and has_xyz:
            binding.move_xyz_by_world_space_delta(delta[:3], then_depth, done)
        elif delta[3] != 0.0:
            binding.move_depth_by_world_space_delta(delta[3], done, done)
        else:
            binding.move_xyz_by_world_space_delta(delta[:3], done, done)
        return True

    # -- listeners --
    def add_pose_listener(self, listener: PoseListener) -> None:
        self._listeners.append(listener)

    def remove_pose_listener(self, listener: PoseListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # -- manual edits --
    @property
    def dirty(self) -> bool:
        return self._dirty

    def move_xyzd(self, direction, speed: float) -> bool:
        """Shift by a world-space direction (x, y, z, depth) times ``speed``.

        With :attr:`manual_control` set and a manipulator attached, the delta
        moves the hardware instead and the echo loop updates the pose.
        """
        if self.manual_control and self.manipulator_binding is not None:
            return self._move_manipulator(as_vec4(direction) * float(speed))
        if self._locked:
            return False
        delta = as_vec4(direction) * float(speed) * self.unlocked_dir
        # Rotate only; a 1 um step in world stays a 1 um step in transformed space.
        self.insertion.apmldv = self.insertion.apmldv + self.insertion.world_to_transformed_vector(delta[:3])
        self._depth += delta[3]
        self._dirty = True
        return True

    def move_ypr(self, angles, speed: float) -> bool:
        if self._locked:
            return False
        delta = as_vec3(angles) * float(speed) * self.unlocked_rot
        self.insertion.yaw += delta[0]
        self.insertion.pitch = self.insertion.pitch + delta[1]
        self.insertion.roll += delta[2]
        self._dirty = True
        return True

    def tick(self) -> bool:
        """Apply a pending pose change. Returns True when one was applied."""
        if not self._dirty:
            return False
        self._dirty = False
        self._recompute()
        return True

    # -- direct setters --
    def set_probe_position(self, position=None) -> None:
        if position is not None:
            pos = np.asarray(position, dtype=np.float64).reshape(-1)
            if pos.shape[0] == 4:
                self.insertion.apmldv = pos[:3]
                self._depth = float(pos[3])
            else:
                self.insertion.apmldv = pos
        self._dirty = False
        self._recompute()

    def set_probe_angles(self, angles) -> None:
        self.insertion.angles = angles
        self._dirty = False
        self._recompute()

    def reset_position(self) -> None:
        self.insertion.apmldv = DEFAULT_START

    def reset_angles(self) -> None:
        self.insertion.angles = DEFAULT_ANGLES

    def reset_insertion(self) -> None:
        self.reset_position()
        self.reset_angles()
        self.set_probe_position()

    # -- getters --
    def tip_world(self) -> TipFrame:
        ins = self.insertion
        tip_t = self.tip_position_world_t
        right, up, forward = ins.tip_axes()
        coord = ins.world_t_to_world_u(tip_t)
        return TipFrame(
            coord=coord,
            right=normalized(ins.world_t_to_world_u(tip_t + right) - coord),
            up=normalized(ins.world_t_to_world_u(tip_t + up) - coord),
            forward=normalized(ins.world_t_to_world_u(tip_t + forward) - coord),
        )

    def is_probe_in_brain(self) -> bool:
        return self.surface.in_brain

    # -- internals --
    def _recompute(self) -> None:
        ins = self.insertion
        if self._depth != 0.0:
            _, _, forward = ins.tip_axes()
            ins.apmldv = ins.apmldv + ins.world_to_transformed_vector(forward) * self._depth
            self._depth = 0.0
        self.tip_position_world_t = ins.position_world_t()
        self._update_surface()
        for listener in list(self._listeners):
            listener(self)

    def _update_surface(self) -> None:
        if self.dataset is None:
            return
        tip = self.tip_world()
        space = self.dataset.coordinate_space
        tip_space = space.from_world(tip.coord)
        if not self.dataset.is_in_brain(tip_space):
            self.surface = SurfaceState()
            return
        surface_space = self.dataset.find_surface_coordinate(tip_space, space.from_world_vector(tip.up))
        if np.isnan(surface_space[0]):
            self.surface = SurfaceState(in_brain=True)
            return
        surface_world = space.to_world(surface_space)
        surface_t = self.insertion.world_to_transformed(surface_world)
        depth_t = float(np.linalg.norm(surface_t - self.insertion.apmldv))
        self.surface = SurfaceState(in_brain=True, depth_t=depth_t, surface_world=surface_world)
