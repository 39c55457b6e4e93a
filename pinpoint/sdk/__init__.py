"""Programmatic entry points for running Pinpoint sessions."""

from .run import SessionClock, SessionResult, run_session_from_config

__all__ = ["SessionClock", "SessionResult", "run_session_from_config"]
