"""Multi-turn sessions for stateful capabilities."""

from medico.sessions.machine import ConcurrencyPolicy, Condenser, SessionStateMachine
from medico.sessions.store import FileSessionStore, InMemorySessionStore, SessionStore
from medico.sessions.types import (
    Session,
    SessionState,
    Turn,
    TurnResult,
    generate_session_id,
)

__all__ = [
    "ConcurrencyPolicy",
    "Condenser",
    "FileSessionStore",
    "InMemorySessionStore",
    "Session",
    "SessionState",
    "SessionStateMachine",
    "SessionStore",
    "Turn",
    "TurnResult",
    "generate_session_id",
]
