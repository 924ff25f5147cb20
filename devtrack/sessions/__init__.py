"""Hosted interactive sessions (assistant CLI, database client, shell)."""

from devtrack.sessions.models import LaunchSpec, Session, SessionKind, SessionState
from devtrack.sessions.multiplexer import SessionMultiplexer
from devtrack.sessions.terminal import KeyOutcome, Terminal

__all__ = [
    "KeyOutcome",
    "LaunchSpec",
    "Session",
    "SessionKind",
    "SessionMultiplexer",
    "SessionState",
    "Terminal",
]
