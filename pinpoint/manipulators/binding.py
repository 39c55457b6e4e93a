from __future__ import annotations
from enum import Enum
from typing import Callable, List, Optional
import math
import time
import numpy as np

from ..core.errors import ErrorCallback, ErrorKind, LinkError, PinpointError
from ..core.recorder import EchoRecord
from ..core.rotations import WORLD_DOWN, WORLD_UP
from ..core.utils import as_vec3, as_vec4, get_logger
from ..probes import ProbeController
from ..spaces import CoordinateSpace, get_space
from ..transforms import AffineTransform, build_manipulator_transform
from .link import ManipulatorLink

_log = get_logger()

AUTOMATIC_MOVEMENT_SPEED = 500.0
CALIBRATION_LEASE_HOURS = 1.0
SURFACE_SEARCH_OFFSET_MM = 5.0


class EchoState(Enum):
    UNINITIALIZED = "uninitialized"
    QUERYING = "querying"
    CONFIGURING = "configuring"
    CALIBRATING = "calibrating"
    ECHOING = "echoing"
    STALLED = "stalled"
    DISABLED = "disabled"


def _space_name(manipulator_type: str) -> str:
    return "sensapex" if manipulator_type.lower() == "sensapex" else "new_scale"


class ManipulatorBinding:
    """Keeps one probe pose in step with one hardware manipulator.

    Every hardware exchange goes through ``link`` as a request with success
    and error callbacks. Position requests form a chain (each reply issues
    the next request) with at most one request in flight; ``tick`` watches
    that chain and re-issues a request that has been waiting longer than
    ``request_timeout_s``. Replies that arrive after :meth:`disable`, or that
    belong to a superseded request, are dropped.
    """

    def __init__(
        self,
        controller: ProbeController,
        link: ManipulatorLink,
        clock: Callable[[], float] = time.monotonic,
        log_rate_hz: float = 10.0,
        hysteresis: float = 1e-4,
        request_timeout_s: float = 2.0,
        movement_speed: float = AUTOMATIC_MOVEMENT_SPEED,
        record_sink=None,
        right_handed: bool = False,
    ) -> None:
        if log_rate_hz <= 0:
            raise ValueError("log_rate_hz must be positive")
        if request_timeout_s <= 0:
            raise ValueError("request_timeout_s must be positive")
        self.controller = controller
        self.link = link
        self.clock = clock
        self.log_interval = 1.0 / float(log_rate_hz)
        self.hysteresis = float(hysteresis)
        self.request_timeout_s = float(request_timeout_s)
        self.movement_speed = float(movement_speed)
        self.record_sink = record_sink

        self.state = EchoState.UNINITIALIZED
        self.manipulator_id: Optional[str] = None
        self.manipulator_type: Optional[str] = None
        self.coordinate_space: Optional[CoordinateSpace] = None
        self.transform: Optional[AffineTransform] = None
        self.on_error: Optional[ErrorCallback] = None

        self.zero_offset_listeners: List[Callable[[np.ndarray], None]] = []
        self.brain_offset_listeners: List[Callable[[float], None]] = []
        self.drop_mode_listeners: List[Callable[[bool], None]] = []

        self._right_handed = bool(right_handed)
        self._zero_offset = np.zeros(4)
        self._brain_offset = 0.0
        self._drop_with_depth = True
        self._last_position = np.zeros(4)
        self._last_logged: Optional[float] = None
        self._session = 0
        self._token = 0
        self._pending_since: Optional[float] = None
        self._seed_pending = False
        self.echo_count = 0
        self.stall_count = 0

    # -- properties --
    @property
    def bound(self) -> bool:
        return self.manipulator_id is not None and self.state is not EchoState.DISABLED

    @property
    def zero_coordinate_offset(self) -> np.ndarray:
        return self._zero_offset.copy()

    @zero_coordinate_offset.setter
    def zero_coordinate_offset(self, value) -> None:
        # NaN components keep the previous value
        new = as_vec4(value)
        self._zero_offset = np.where(np.isnan(new), self._zero_offset, new)
        for cb in list(self.zero_offset_listeners):
            cb(self._zero_offset.copy())

    @property
    def brain_surface_offset(self) -> float:
        return self._brain_offset

    @brain_surface_offset.setter
    def brain_surface_offset(self, value: float) -> None:
        self._brain_offset = float(value)
        for cb in list(self.brain_offset_listeners):
            cb(self._brain_offset)

    @property
    def drop_to_surface_with_depth(self) -> bool:
        return self._drop_with_depth

    @drop_to_surface_with_depth.setter
    def drop_to_surface_with_depth(self, value: bool) -> None:
        # The axis is frozen once a surface offset has been applied along it.
        if self._brain_offset != 0:
            return
        self._drop_with_depth = bool(value)
        for cb in list(self.drop_mode_listeners):
            cb(self._drop_with_depth)

    @property
    def right_handed(self) -> bool:
        return self._right_handed

    @right_handed.setter
    def right_handed(self, value: bool) -> None:
        self._right_handed = bool(value)
        if self.manipulator_type is not None:
            self.refresh_transform()

    def refresh_transform(self) -> AffineTransform:
        """Rebuild the manipulator transform from the probe's current angles."""
        if self.manipulator_type is None:
            raise PinpointError("Manipulator type is unknown until the binding is initialized")
        ins = self.controller.insertion
        self.transform = build_manipulator_transform(
            _space_name(self.manipulator_type), self._right_handed, ins.phi, ins.theta
        )
        return self.transform

    # -- error plumbing --
    def _report(self, err: LinkError, on_error: Optional[ErrorCallback] = None) -> None:
        if err.kind is ErrorKind.HARDWARE_LINK:
            _log.error("%s", err)
        else:
            _log.warning("%s", err)
        target = on_error if on_error is not None else self.on_error
        if target is not None:
            target(err)

    def _forward(self, on_error: Optional[ErrorCallback] = None) -> ErrorCallback:
        return lambda err: self._report(err, on_error)

    def _require_bound(self) -> str:
        if not self.bound:
            raise PinpointError("Manipulator binding is not active")
        return self.manipulator_id

    # -- lifecycle --
    def initialize(self, manipulator_id: str, calibrated: bool, on_error: Optional[ErrorCallback] = None) -> None:
        """Attach to ``manipulator_id`` and start echoing its position.

        A hardware error before echoing starts rolls the binding back to the
        state it was initialized from and unlocks the probe controller, so
        ``initialize`` can be called again.
        """
        if self.state not in (EchoState.UNINITIALIZED, EchoState.DISABLED):
            raise PinpointError(f"Cannot initialize a binding in state {self.state.value}")
        manipulator_id = str(manipulator_id)
        self.on_error = on_error
        previous = self.state
        self._session += 1
        session = self._session
        self.state = EchoState.QUERYING
        _log.debug("Querying manipulators for %s", manipulator_id)

        def on_manipulators(ids, num_axes, manipulator_type) -> None:
            if session != self._session:
                return
            if manipulator_id not in [str(i) for i in ids]:
                self.state = previous
                self._report(LinkError(
                    ErrorKind.UNKNOWN_MANIPULATOR,
                    f"Manipulator {manipulator_id} is not among available manipulators {list(ids)}",
                    manipulator_id,
                ))
                return
            self._configure(session, previous, manipulator_id, str(manipulator_type), calibrated)

        self.link.get_manipulators(on_manipulators, self._setup_failed(session, previous))

    def _setup_failed(self, session: int, previous: EchoState) -> ErrorCallback:
        def fail(err: LinkError) -> None:
            if session != self._session:
                return
            self._roll_back(previous)
            self._report(err)
        return fail

    def _roll_back(self, previous: EchoState) -> None:
        manipulator_id = self.manipulator_id
        if manipulator_id is not None and self.state is EchoState.CALIBRATING:
            # registration was acknowledged
            self.link.unregister_manipulator(manipulator_id, None, self._forward())
        _log.warning("Setup of manipulator %s failed; binding returns to %s", manipulator_id, previous.value)
        self._session += 1
        self.manipulator_id = None
        self.manipulator_type = None
        self.coordinate_space = None
        self.transform = None
        self.controller.detach_manipulator()
        self.controller.set_controller_lock(False)
        self.state = previous

    def _configure(self, session: int, previous: EchoState, manipulator_id: str, manipulator_type: str, calibrated: bool) -> None:
        self.state = EchoState.CONFIGURING
        self.manipulator_id = manipulator_id
        self.manipulator_type = manipulator_type
        self.coordinate_space = get_space(_space_name(manipulator_type))
        self.refresh_transform()
        self.controller.set_controller_lock(True)
        self.controller.attach_manipulator(self)
        _log.info(
            "Bound manipulator %s (%s) with %s",
            manipulator_id, manipulator_type, type(self.transform).__name__,
        )
        fail = self._setup_failed(session, previous)

        def registered() -> None:
            if session != self._session:
                return
            self.state = EchoState.CALIBRATING
            if calibrated:
                self.link.bypass_calibration(manipulator_id, lambda: self._start_echoing(session), fail)
            else:
                self._calibrate(session, manipulator_id, fail)

        self.link.register_manipulator(manipulator_id, registered, fail)

    def _calibrate(self, session: int, manipulator_id: str, fail: ErrorCallback) -> None:
        def leased(_) -> None:
            if session != self._session:
                return
            _log.info("Calibrating manipulator %s", manipulator_id)
            self.link.calibrate(manipulator_id, calibrated, fail)

        def calibrated() -> None:
            if session != self._session:
                return
            self.link.set_can_write(manipulator_id, False, 0, lambda _: self._start_echoing(session), fail)

        self.link.set_can_write(manipulator_id, True, CALIBRATION_LEASE_HOURS, leased, fail)

    def _start_echoing(self, session: int) -> None:
        if session != self._session or not self.bound:
            return
        self.state = EchoState.ECHOING
        _log.info("Echoing manipulator %s", self.manipulator_id)
        # the first accepted reply seeds the zero offset, even after a re-issue
        self._seed_pending = True
        self._request_position()

    def disable(self) -> None:
        """Detach from the manipulator; replies still in flight become no-ops."""
        if self.manipulator_id is not None:
            self.link.unregister_manipulator(self.manipulator_id, None, self._forward())
            _log.info("Disabled manipulator %s", self.manipulator_id)
        self._session += 1
        self._token += 1
        self._pending_since = None
        self._seed_pending = False
        self.manipulator_id = None
        # cleared silently, without notifying listeners
        self._zero_offset = np.zeros(4)
        self._brain_offset = 0.0
        self._last_position = np.zeros(4)
        self._last_logged = None
        self.controller.detach_manipulator()
        self.controller.set_controller_lock(False)
        self.state = EchoState.DISABLED

    # -- echo loop --
    def _request_position(self) -> None:
        self._token += 1
        token = self._token
        self._pending_since = self.clock()

        def on_position(pos) -> None:
            if token != self._token or not self.bound:
                _log.debug("Dropping stale position reply for %s", self.manipulator_id)
                return
            self._pending_since = None
            if self._seed_pending:
                self._seed_pending = False
                if not np.any(self._zero_offset):
                    self.zero_coordinate_offset = pos
            self.echo_position(pos)

        def on_failure(err: LinkError) -> None:
            if token != self._token or not self.bound:
                return
            # request stays pending so tick() retries it after the timeout
            self._report(err)

        self.link.get_pos(self.manipulator_id, on_position, on_failure)

    def echo_position(self, pos) -> None:
        """Apply one reported manipulator position to the probe, then poll again."""
        if not self.bound or self.transform is None:
            return
        pos = as_vec4(pos)
        if self.state is EchoState.STALLED:
            _log.info("Manipulator %s recovered", self.manipulator_id)
        self.state = EchoState.ECHOING

        dv_delta = abs(pos[2] - self._last_position[2])
        depth_delta = abs(pos[3] - self._last_position[3])
        if dv_delta > self.hysteresis or depth_delta > self.hysteresis:
            self.drop_to_surface_with_depth = depth_delta > dv_delta
        self._last_position = pos.copy()

        adjusted = pos - self._zero_offset
        space_pos = self.transform.transform_to_space(adjusted)

        brain_offset = 0.0 if math.isnan(self._brain_offset) else self._brain_offset
        down_z = self.coordinate_space.from_world_vector(WORLD_DOWN)[2]
        if self._drop_with_depth:
            adjusted[3] += down_z * brain_offset
        else:
            space_pos[2] += down_z * brain_offset

        world = self.coordinate_space.to_world_vector(space_pos[:3])
        insertion = self.controller.insertion
        apmldv = insertion.world_to_transformed_vector(world)
        depth = 0.0 if _space_name(self.manipulator_type) == "new_scale" else adjusted[3]
        self.controller.set_probe_position(np.append(apmldv, depth))
        self.echo_count += 1

        now = self.clock()
        if self.record_sink is not None and (
            self._last_logged is None or now - self._last_logged >= self.log_interval
        ):
            self._last_logged = now
            tip = self.controller.tip_position_world_t
            self.record_sink.write(EchoRecord(
                timestamp=float(now),
                manipulator_id=self.manipulator_id,
                position=tuple(float(v) for v in pos),
                angles=(insertion.phi, insertion.theta, insertion.spin),
                tip_world=tuple(float(v) for v in tip),
            ))

        self._request_position()

    def tick(self) -> EchoState:
        """Supervise the position chain; re-issue a request that timed out."""
        if self.state not in (EchoState.ECHOING, EchoState.STALLED) or self._pending_since is None:
            return self.state
        waited = self.clock() - self._pending_since
        if waited < self.request_timeout_s:
            return self.state
        if self.state is EchoState.ECHOING:
            self.state = EchoState.STALLED
            self.stall_count += 1
            self._report(LinkError(
                ErrorKind.STALLED,
                f"No position reply after {waited:.2f} s; re-issuing request",
                self.manipulator_id,
            ))
        else:
            _log.debug("Manipulator %s still stalled; re-issuing request", self.manipulator_id)
        self._request_position()
        return self.state

    # -- conversions and offsets --
    def insertion_to_manipulator_position(self, apmldv) -> np.ndarray:
        """Manipulator coordinates (x, y, z, depth) that put the probe at ``apmldv``."""
        if self.transform is None or self.coordinate_space is None:
            raise PinpointError("Binding has no transform; initialize it first")
        world = self.controller.insertion.transformed_to_world_vector(as_vec3(apmldv))
        space_pos = self.coordinate_space.from_world(world)
        target = self.transform.space_to_transform(space_pos)
        brain_offset = 0.0 if math.isnan(self._brain_offset) else self._brain_offset
        if self._drop_with_depth:
            target[3] -= brain_offset
        else:
            target[2] -= brain_offset
        return target + self._zero_offset

    def compute_brain_surface_offset(self, on_error: Optional[ErrorCallback] = None) -> bool:
        """Set the brain surface offset from the current tip.

        Returns False, leaving the offset unchanged, when no surface is found.
        """
        controller = self.controller
        if controller.is_probe_in_brain():
            self.brain_surface_offset = self._brain_offset - controller.surface.depth_t
            return True

        dataset = controller.dataset
        if dataset is None:
            raise PinpointError("No annotation dataset attached to the probe controller")
        tip = controller.tip_world()
        direction = tip.up if self._drop_with_depth else WORLD_UP
        space = dataset.coordinate_space
        surface = dataset.find_surface_coordinate(
            space.from_world(tip.coord - direction * SURFACE_SEARCH_OFFSET_MM),
            space.from_world_vector(direction),
        )
        if np.isnan(surface[0]):
            self._report(
                LinkError(ErrorKind.SURFACE_NOT_FOUND, "Could not find brain surface; offset unchanged", self.manipulator_id),
                on_error,
            )
            return False
        surface_t = controller.insertion.world_to_transformed(space.to_world(surface))
        self.brain_surface_offset = self._brain_offset + float(np.linalg.norm(surface_t - controller.insertion.apmldv))
        return True

    def increment_brain_surface_offset(self, increment: float) -> None:
        self.brain_surface_offset = self._brain_offset + float(increment)

    # -- movement --
    def move_xyz_by_world_space_delta(
        self,
        world_delta,
        on_success: Optional[Callable[[np.ndarray], None]] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        manipulator_id = self._require_bound()
        session = self._session
        space_delta = self.coordinate_space.from_world_vector(as_vec3(world_delta))
        transform_delta = self.transform.space_to_transform(space_delta)
        transform_delta[3] = 0.0
        fail = self._forward(on_error)

        def arrived(pos) -> None:
            if on_success is not None:
                on_success(pos)

        def got(pos) -> None:
            if session != self._session:
                _log.debug("Dropping move of %s; binding was disabled", manipulator_id)
                return
            target = as_vec4(pos) + transform_delta
            _log.debug("Moving %s to %s", manipulator_id, target.tolist())
            self.link.goto_pos(manipulator_id, target, self.movement_speed, arrived, fail)

        self.link.get_pos(manipulator_id, got, fail)

    def move_depth_by_world_space_delta(
        self,
        world_delta: float,
        on_success: Optional[Callable[[bool], None]] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        manipulator_id = self._require_bound()
        session = self._session
        depth_delta = self.coordinate_space.from_world_vector(WORLD_DOWN)[2] * float(world_delta)
        fail = self._forward(on_error)

        def left_brain(state: bool) -> None:
            if on_success is not None:
                on_success(state)

        def driven(_) -> None:
            self.link.set_inside_brain(manipulator_id, False, left_brain, fail)

        def entered(_) -> None:
            if session != self._session:
                return
            self.link.drive_to_depth(manipulator_id, target, self.movement_speed, driven, fail)

        def got(pos) -> None:
            nonlocal target
            if session != self._session:
                _log.debug("Dropping depth move of %s; binding was disabled", manipulator_id)
                return
            target = float(as_vec4(pos)[3] + depth_delta)
            self.link.set_inside_brain(manipulator_id, True, entered, fail)

        target = 0.0
        self.link.get_pos(manipulator_id, got, fail)
