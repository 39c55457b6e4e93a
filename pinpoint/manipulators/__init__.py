"""Hardware manipulator link contract and the echo binding."""

from .binding import AUTOMATIC_MOVEMENT_SPEED, EchoState, ManipulatorBinding
from .link import ManipulatorLink, SimulatedManipulator, SimulatedManipulatorLink

__all__ = [
    "AUTOMATIC_MOVEMENT_SPEED",
    "EchoState",
    "ManipulatorBinding",
    "ManipulatorLink",
    "SimulatedManipulator",
    "SimulatedManipulatorLink",
]
