"""Manipulator affine transforms and atlas coordinate transforms."""

from .affine import (
    AffineTransform,
    NewScaleLeftTransform,
    NewScaleRightTransform,
    SensapexLeftTransform,
    SensapexRightTransform,
    build_manipulator_transform,
)
from .atlas import AtlasTransform, LinearAtlasTransform, NullTransform, get_atlas_transform

__all__ = [
    "AffineTransform",
    "NewScaleLeftTransform",
    "NewScaleRightTransform",
    "SensapexLeftTransform",
    "SensapexRightTransform",
    "build_manipulator_transform",
    "AtlasTransform",
    "LinearAtlasTransform",
    "NullTransform",
    "get_atlas_transform",
]
