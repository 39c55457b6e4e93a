"""Named coordinate spaces and their maps to world space."""

from .base import CoordinateSpace
from .ccf import CCFSpace
from .manipulator import NewScaleSpace, SensapexSpace

_SPACES = {
    "sensapex": SensapexSpace,
    "new_scale": NewScaleSpace,
    "newscale": NewScaleSpace,
    "ccf": CCFSpace,
}


def get_space(name: str) -> CoordinateSpace:
    key = name.strip().lower()
    if key not in _SPACES:
        raise ValueError(f"Unknown coordinate space '{name}'")
    return _SPACES[key]()


__all__ = ["CoordinateSpace", "CCFSpace", "NewScaleSpace", "SensapexSpace", "get_space"]
