from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional, Protocol
import time
import numpy as np

from ..core.errors import ErrorCallback, ErrorKind, LinkError
from ..core.utils import as_vec4, get_logger

_log = get_logger()

PositionCallback = Callable[[np.ndarray], None]
StateCallback = Callable[[bool], None]
ManipulatorsCallback = Callable[[List[str], int, str], None]


class ManipulatorLink(Protocol):
    """Request/acknowledgement contract of the hardware link.

    Every call returns immediately; the outcome arrives later through one of
    the callbacks. Hardware-side failures go to ``on_error``, never raised.
    One link instance is shared by every manipulator binding.
    """

    def get_manipulators(self, on_success: ManipulatorsCallback, on_error: Optional[ErrorCallback] = None) -> None: ...

    def register_manipulator(self, manipulator_id: str, on_success: Optional[Callable[[], None]] = None, on_error: Optional[ErrorCallback] = None) -> None: ...

    def unregister_manipulator(self, manipulator_id: str, on_success: Optional[Callable[[], None]] = None, on_error: Optional[ErrorCallback] = None) -> None: ...

    def get_pos(self, manipulator_id: str, on_success: PositionCallback, on_error: Optional[ErrorCallback] = None) -> None: ...

    def goto_pos(self, manipulator_id: str, pos: np.ndarray, speed: float, on_success: PositionCallback, on_error: Optional[ErrorCallback] = None) -> None: ...

    def drive_to_depth(self, manipulator_id: str, depth: float, speed: float, on_success: Callable[[float], None], on_error: Optional[ErrorCallback] = None) -> None: ...

    def set_inside_brain(self, manipulator_id: str, inside: bool, on_success: StateCallback, on_error: Optional[ErrorCallback] = None) -> None: ...

    def set_can_write(self, manipulator_id: str, can_write: bool, hours: float, on_success: StateCallback, on_error: Optional[ErrorCallback] = None) -> None: ...

    def calibrate(self, manipulator_id: str, on_success: Callable[[], None], on_error: Optional[ErrorCallback] = None) -> None: ...

    def bypass_calibration(self, manipulator_id: str, on_success: Callable[[], None], on_error: Optional[ErrorCallback] = None) -> None: ...

    def stop(self, on_success: StateCallback, on_error: Optional[ErrorCallback] = None) -> None: ...


@dataclass
class SimulatedManipulator:
    id: str
    position: np.ndarray = field(default_factory=lambda: np.zeros(4))
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(4))
    registered: bool = False
    calibrated: bool = False
    inside_brain: bool = False
    write_until: float = 0.0

    def __post_init__(self) -> None:
        self.id = str(self.id)
        self.position = as_vec4(self.position)
        self.velocity = as_vec4(self.velocity)


class SimulatedManipulatorLink:
    """In-process stand-in for the hardware link server.

    Requests are answered in order, but only when :meth:`pump` runs, so the
    asynchronous interleavings of the real link (a binding disabled while a
    request is in flight, a lost acknowledgement) can be reproduced.
    """

    def __init__(
        self,
        manipulators: Iterable[SimulatedManipulator] = (),
        manipulator_type: str = "sensapex",
        num_axes: int = 4,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.manipulator_type = manipulator_type
        self.num_axes = int(num_axes)
        self.hold_acknowledgements = False
        self.sent: List[tuple[str, Optional[str]]] = []
        self._clock = clock
        self._manipulators: Dict[str, SimulatedManipulator] = {}
        self._pending: Deque[Callable[[], None]] = deque()
        for m in manipulators:
            self.add_manipulator(m)

    # -- simulation controls --
    def add_manipulator(self, manipulator: SimulatedManipulator) -> None:
        self._manipulators[manipulator.id] = manipulator

    def manipulator(self, manipulator_id: str) -> SimulatedManipulator:
        return self._manipulators[str(manipulator_id)]

    @property
    def pending(self) -> int:
        return len(self._pending)

    def pump(self, max_messages: Optional[int] = None) -> int:
        """Deliver the acknowledgements queued so far. Returns how many ran."""
        if self.hold_acknowledgements:
            return 0
        budget = len(self._pending) if max_messages is None else min(max_messages, len(self._pending))
        delivered = 0
        while delivered < budget and self._pending:
            self._pending.popleft()()
            delivered += 1
        return delivered

    def drop_pending(self) -> int:
        n = len(self._pending)
        self._pending.clear()
        return n

    def advance(self, dt: float) -> None:
        for m in self._manipulators.values():
            m.position = m.position + m.velocity * float(dt)

    # -- helpers --
    def _emit(self, event: str, manipulator_id: Optional[str], handler: Callable[[], None]) -> None:
        self.sent.append((event, manipulator_id))
        self._pending.append(handler)

    def _fail(self, on_error: Optional[ErrorCallback], message: str, manipulator_id: Optional[str]) -> None:
        err = LinkError(ErrorKind.HARDWARE_LINK, message, manipulator_id)
        _log.debug("link error: %s", err)
        if on_error is not None:
            on_error(err)

    def _lookup(self, manipulator_id: str, on_error: Optional[ErrorCallback], registered: bool = True) -> Optional[SimulatedManipulator]:
        m = self._manipulators.get(str(manipulator_id))
        if m is None:
            self._fail(on_error, f"Manipulator {manipulator_id} not found", manipulator_id)
            return None
        if registered and not m.registered:
            self._fail(on_error, f"Manipulator {manipulator_id} not registered", manipulator_id)
            return None
        return m

    def _writable(self, m: SimulatedManipulator, on_error: Optional[ErrorCallback]) -> bool:
        if self._clock() >= m.write_until:
            self._fail(on_error, f"Manipulator {m.id} is not writeable", m.id)
            return False
        return True

    def _movable(self, m: SimulatedManipulator, on_error: Optional[ErrorCallback]) -> bool:
        if not m.calibrated:
            self._fail(on_error, f"Manipulator {m.id} not calibrated", m.id)
            return False
        return self._writable(m, on_error)

    # -- link contract --
    def get_manipulators(self, on_success: ManipulatorsCallback, on_error: Optional[ErrorCallback] = None) -> None:
        def handle() -> None:
            on_success(sorted(self._manipulators), self.num_axes, self.manipulator_type)
        self._emit("get_manipulators", None, handle)

    def register_manipulator(self, manipulator_id: str, on_success: Optional[Callable[[], None]] = None, on_error: Optional[ErrorCallback] = None) -> None:
        def handle() -> None:
            m = self._lookup(manipulator_id, on_error, registered=False)
            if m is None:
                return
            m.registered = True
            if on_success is not None:
                on_success()
        self._emit("register_manipulator", str(manipulator_id), handle)

    def unregister_manipulator(self, manipulator_id: str, on_success: Optional[Callable[[], None]] = None, on_error: Optional[ErrorCallback] = None) -> None:
        def handle() -> None:
            m = self._lookup(manipulator_id, on_error)
            if m is None:
                return
            m.registered = False
            m.write_until = 0.0
            if on_success is not None:
                on_success()
        self._emit("unregister_manipulator", str(manipulator_id), handle)

    def get_pos(self, manipulator_id: str, on_success: PositionCallback, on_error: Optional[ErrorCallback] = None) -> None:
        def handle() -> None:
            m = self._lookup(manipulator_id, on_error)
            if m is not None:
                on_success(m.position.copy())
        self._emit("get_pos", str(manipulator_id), handle)

    def goto_pos(self, manipulator_id: str, pos: np.ndarray, speed: float, on_success: PositionCallback, on_error: Optional[ErrorCallback] = None) -> None:
        target = as_vec4(pos)

        def handle() -> None:
            m = self._lookup(manipulator_id, on_error)
            if m is None or not self._movable(m, on_error):
                return
            m.position = target.copy()
            on_success(m.position.copy())
        self._emit("goto_pos", str(manipulator_id), handle)

    def drive_to_depth(self, manipulator_id: str, depth: float, speed: float, on_success: Callable[[float], None], on_error: Optional[ErrorCallback] = None) -> None:
        def handle() -> None:
            m = self._lookup(manipulator_id, on_error)
            if m is None or not self._movable(m, on_error):
                return
            m.position[3] = float(depth)
            on_success(float(m.position[3]))
        self._emit("drive_to_depth", str(manipulator_id), handle)

    def set_inside_brain(self, manipulator_id: str, inside: bool, on_success: StateCallback, on_error: Optional[ErrorCallback] = None) -> None:
        def handle() -> None:
            m = self._lookup(manipulator_id, on_error)
            if m is None:
                return
            m.inside_brain = bool(inside)
            on_success(m.inside_brain)
        self._emit("set_inside_brain", str(manipulator_id), handle)

    def set_can_write(self, manipulator_id: str, can_write: bool, hours: float, on_success: StateCallback, on_error: Optional[ErrorCallback] = None) -> None:
        def handle() -> None:
            m = self._lookup(manipulator_id, on_error)
            if m is None:
                return
            m.write_until = self._clock() + float(hours) * 3600.0 if can_write else 0.0
            on_success(bool(can_write))
        self._emit("set_can_write", str(manipulator_id), handle)

    def calibrate(self, manipulator_id: str, on_success: Callable[[], None], on_error: Optional[ErrorCallback] = None) -> None:
        def handle() -> None:
            m = self._lookup(manipulator_id, on_error)
            if m is None or not self._writable(m, on_error):
                return
            m.calibrated = True
            on_success()
        self._emit("calibrate", str(manipulator_id), handle)

    def bypass_calibration(self, manipulator_id: str, on_success: Callable[[], None], on_error: Optional[ErrorCallback] = None) -> None:
        def handle() -> None:
            m = self._lookup(manipulator_id, on_error)
            if m is None:
                return
            m.calibrated = True
            on_success()
        self._emit("bypass_calibration", str(manipulator_id), handle)

    def stop(self, on_success: StateCallback, on_error: Optional[ErrorCallback] = None) -> None:
        def handle() -> None:
            for m in self._manipulators.values():
                m.velocity = np.zeros(4)
            on_success(True)
        self._emit("stop", None, handle)
