from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class ErrorKind(Enum):
    HARDWARE_LINK = "hardware_link"
    SURFACE_NOT_FOUND = "surface_not_found"
    UNKNOWN_MANIPULATOR = "unknown_manipulator"
    STALLED = "stalled"
    CONFIGURATION = "configuration"


@dataclass(frozen=True)
class LinkError:
    """Error value handed to callbacks at the hardware boundary."""
    kind: ErrorKind
    message: str
    manipulator_id: Optional[str] = None

    def __str__(self) -> str:
        if self.manipulator_id is None:
            return f"{self.kind.value}: {self.message}"
        return f"{self.kind.value} [{self.manipulator_id}]: {self.message}"


ErrorCallback = Callable[[LinkError], None]


class PinpointError(Exception):
    """Raised for misuse outside the hardware boundary (bad state, bad setup)."""
