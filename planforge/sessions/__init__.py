"""Phase state machine: sessions, phase completion, progress."""

from planforge.sessions.repository import (
    FileSessionRepository,
    SessionRepository,
    SqlSessionRepository,
)
from planforge.sessions.service import SessionService
from planforge.sessions.state_machine import PHASE_ORDER, get_progress

__all__ = [
    "FileSessionRepository",
    "PHASE_ORDER",
    "SessionRepository",
    "SessionService",
    "SqlSessionRepository",
    "get_progress",
]
