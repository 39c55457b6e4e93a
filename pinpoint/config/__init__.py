"""Configuration loading utilities for Pinpoint sessions."""

from .schema import (
    SessionFileConfig,
    load_config,
)

__all__ = ["SessionFileConfig", "load_config"]
