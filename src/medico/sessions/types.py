"""Session types for multi-turn capabilities."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from medico.capabilities.types import InvocationResult

SESSION_VERSION = "1"


class SessionState(str, Enum):
    """Where a session is in its turn cycle."""

    NEW = "new"
    AWAITING_USER_TURN = "awaiting_user_turn"
    PROCESSING_TURN = "processing_turn"
    COMPLETED = "completed"
    # Outcome of a turn whose failure was not committed; never stored
    FAILED = "failed"


def now_utc() -> datetime:
    return datetime.now(UTC)


def _parse_datetime(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def generate_session_id(prefix: str) -> str:
    """Generate an opaque session id: ``<prefix>-<epoch ms>-<random hex>``."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


@dataclass
class Turn:
    """One committed turn: the caller's input and the capability's output."""

    input: dict[str, Any]
    output: dict[str, Any]
    recovered: bool = False
    notes: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "input": self.input,
            "output": self.output,
            "recovered": self.recovered,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Turn:
        return cls(
            input=dict(data["input"]),
            output=dict(data["output"]),
            recovered=data.get("recovered", False),
            notes=list(data.get("notes", [])),
            created_at=_parse_datetime(data["created_at"]),
        )


@dataclass
class Session:
    """Persisted state of one conversation with a single capability."""

    id: str
    capability: str
    state: SessionState = SessionState.NEW
    transcript: list[Turn] = field(default_factory=list)
    summary: str | None = None
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)
    version: str = SESSION_VERSION

    @property
    def completed(self) -> bool:
        return self.state is SessionState.COMPLETED

    @property
    def turn_count(self) -> int:
        return len(self.transcript)

    @property
    def last_output(self) -> dict[str, Any] | None:
        return self.transcript[-1].output if self.transcript else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "id": self.id,
            "capability": self.capability,
            "state": self.state.value,
            "transcript": [turn.to_dict() for turn in self.transcript],
            "summary": self.summary,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        return cls(
            id=data["id"],
            capability=data["capability"],
            state=SessionState(data["state"]),
            transcript=[Turn.from_dict(t) for t in data.get("transcript", [])],
            summary=data.get("summary"),
            created_at=_parse_datetime(data["created_at"]),
            updated_at=_parse_datetime(data["updated_at"]),
            version=data.get("version", SESSION_VERSION),
        )


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one session turn.

    ``session`` is the committed session after the turn, or the stored session
    unchanged (None if nothing was stored yet) when the turn failed.
    """

    result: InvocationResult
    session_id: str
    state: SessionState
    session: Session | None = None

    @property
    def ok(self) -> bool:
        return self.result.ok
