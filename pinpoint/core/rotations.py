from __future__ import annotations
import numpy as np

# Probe local frame before any rotation is applied. The shank runs from the
# tip toward -z, so at pitch 90 the probe points straight down.
LOCAL_RIGHT = np.array([1.0, 0.0, 0.0])
LOCAL_UP = np.array([0.0, 0.0, -1.0])
LOCAL_FORWARD = np.array([0.0, 0.0, 1.0])

WORLD_UP = np.array([0.0, 1.0, 0.0])
WORLD_DOWN = np.array([0.0, -1.0, 0.0])


def rot_x(deg: float) -> np.ndarray:
    r = np.deg2rad(deg)
    c, s = np.cos(r), np.sin(r)
    return np.array([[1, 0, 0], [0, c, -s], [0, s, c]], dtype=np.float64)


def rot_y(deg: float) -> np.ndarray:
    r = np.deg2rad(deg)
    c, s = np.cos(r), np.sin(r)
    return np.array([[c, 0, s], [0, 1, 0], [-s, 0, c]], dtype=np.float64)


def rot_z(deg: float) -> np.ndarray:
    r = np.deg2rad(deg)
    c, s = np.cos(r), np.sin(r)
    return np.array([[c, -s, 0], [s, c, 0], [0, 0, 1]], dtype=np.float64)


def yaw_pitch_roll_matrix(yaw: float, pitch: float, roll: float) -> np.ndarray:
    """Rotation for a probe pose, applied Yaw -> Pitch -> Roll.

    Yaw turns about world up, pitch about the yawed right axis and roll
    about the resulting shank axis (intrinsic rotations). The order matters:
    swapping any two terms gives a different pose for non-trivial angles.
    """
    return rot_y(yaw) @ rot_x(pitch) @ rot_z(roll)
