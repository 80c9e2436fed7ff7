"""Turn-based state machine for stateful capabilities.

Each turn loads the stored session, merges it into the capability input as
context fields, invokes the capability and, only once a usable result is in
hand, appends the turn and saves. A failed, rejected or cancelled turn leaves
the stored session exactly as it was.

Turns for the same session id are serialized with one ``asyncio.Lock`` per
id. A second turn either waits for the first (optionally bounded by
``lock_timeout``) or is rejected with ``TURN_IN_PROGRESS``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import replace
from enum import Enum
from typing import Any

from medico.capabilities.invoker import CapabilityInvoker
from medico.capabilities.types import Failure, FailureKind, Recovered, SessionPolicy
from medico.errors import StoreError
from medico.sessions.store import SessionStore
from medico.sessions.types import (
    Session,
    SessionState,
    Turn,
    TurnResult,
    generate_session_id,
    now_utc,
)

logger = logging.getLogger(__name__)

# Produces the condensed summary for the next turn from the committed session
Condenser = Callable[[Session], str | None]


class ConcurrencyPolicy(str, Enum):
    """What happens to a turn that arrives while another is in flight."""

    WAIT = "wait"
    REJECT = "reject"


class SessionStateMachine:
    """Runs turns of stateful capabilities against a session store."""

    def __init__(
        self,
        invoker: CapabilityInvoker,
        store: SessionStore,
        *,
        concurrency: ConcurrencyPolicy = ConcurrencyPolicy.WAIT,
        lock_timeout: float | None = None,
        condenser: Condenser | None = None,
    ) -> None:
        self._invoker = invoker
        self._store = store
        self._concurrency = ConcurrencyPolicy(concurrency)
        self._lock_timeout = lock_timeout
        self._condenser = condenser
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._processing: set[str] = set()

    @property
    def store(self) -> SessionStore:
        return self._store

    async def run_turn(
        self,
        name: str,
        input_value: Mapping[str, Any],
        session_id: str | None = None,
    ) -> TurnResult:
        """Run one turn of a stateful capability.

        Args:
            name: Registered stateful capability name.
            input_value: The caller's turn input.
            session_id: Existing (or caller-chosen new) session id, or None to
                start a new session under a generated id.

        Raises:
            CapabilityNotFoundError: If no capability has that name.
            ValueError: If the capability is not stateful.
        """
        capability = self._invoker.registry.get(name).capability
        policy = capability.session
        if policy is None:
            raise ValueError(f"capability '{name}' is not stateful")

        if session_id is None:
            session_id = generate_session_id(policy.id_prefix or name)

        lock = self._locks.setdefault(session_id, asyncio.Lock())
        if self._concurrency is ConcurrencyPolicy.REJECT and lock.locked():
            return self._busy(name, session_id)

        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            try:
                async with asyncio.timeout(self._lock_timeout):
                    await lock.acquire()
            except TimeoutError:
                return self._busy(name, session_id)
            try:
                self._processing.add(session_id)
                return await self._process(name, policy, input_value, session_id)
            finally:
                self._processing.discard(session_id)
                lock.release()
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                self._locks.pop(session_id, None)

    async def _process(
        self,
        name: str,
        policy: SessionPolicy,
        input_value: Mapping[str, Any],
        session_id: str,
    ) -> TurnResult:
        try:
            stored = await self._store.load(session_id)
        except StoreError as e:
            return TurnResult(
                result=Failure(kind=FailureKind.STORE_ERROR, message=str(e), stage="load"),
                session_id=session_id,
                state=SessionState.FAILED,
            )

        if stored is not None and stored.capability != name:
            return TurnResult(
                result=Failure(
                    kind=FailureKind.INVALID_INPUT,
                    message=(
                        f"session {session_id} belongs to capability "
                        f"'{stored.capability}', not '{name}'"
                    ),
                    stage="session",
                ),
                session_id=session_id,
                state=stored.state,
                session=stored,
            )
        if stored is not None and stored.completed:
            return TurnResult(
                result=Failure(
                    kind=FailureKind.INVALID_INPUT,
                    message=f"session {session_id} is already completed",
                    stage="session",
                ),
                session_id=session_id,
                state=SessionState.COMPLETED,
                session=stored,
            )

        session = stored or Session(id=session_id, capability=name)
        result = await self._invoker.invoke(
            name, input_value, context=_context(policy, session)
        )
        if isinstance(result, Failure):
            logger.info(
                "session_turn_failed",
                extra={
                    "session_id": session_id,
                    "capability": name,
                    "failure.kind": result.kind.value,
                },
            )
            return TurnResult(
                result=result, session_id=session_id, state=SessionState.FAILED, session=stored
            )

        updated = self._advance(policy, session, input_value, result)
        try:
            await self._store.save(updated)
        except StoreError as e:
            return TurnResult(
                result=Failure(kind=FailureKind.STORE_ERROR, message=str(e), stage="save"),
                session_id=session_id,
                state=SessionState.FAILED,
                session=stored,
            )

        logger.info(
            "session_turn_committed",
            extra={
                "session_id": session_id,
                "capability": name,
                "turn_number": updated.turn_count,
                "state": updated.state.value,
            },
        )
        return TurnResult(
            result=result, session_id=session_id, state=updated.state, session=updated
        )

    def _advance(
        self,
        policy: SessionPolicy,
        session: Session,
        input_value: Mapping[str, Any],
        result: Any,
    ) -> Session:
        recovered = isinstance(result, Recovered)
        turn = Turn(
            input=dict(input_value),
            output=dict(result.value),
            recovered=recovered,
            notes=list(result.notes) if recovered else [],
        )
        completed = result.value.get(policy.completion_field) is True
        updated = replace(
            session,
            transcript=[*session.transcript, turn],
            state=SessionState.COMPLETED if completed else SessionState.AWAITING_USER_TURN,
            updated_at=now_utc(),
        )

        summary = session.summary
        if policy.summary_field and result.value.get(policy.summary_field) is not None:
            summary = _as_text(result.value[policy.summary_field])
        elif self._condenser is not None:
            summary = self._condenser(updated)
        updated.summary = summary
        return updated

    def _busy(self, name: str, session_id: str) -> TurnResult:
        logger.info(
            "session_turn_rejected",
            extra={"session_id": session_id, "capability": name},
        )
        return TurnResult(
            result=Failure(
                kind=FailureKind.TURN_IN_PROGRESS,
                message=f"a turn is already in progress for session {session_id}",
                stage="session",
            ),
            session_id=session_id,
            state=SessionState.PROCESSING_TURN,
        )

    async def state_of(self, session_id: str) -> SessionState:
        """Report a session's state; ``NEW`` if nothing is stored under the id.

        Raises:
            StoreError: If the store could not be read.
        """
        if session_id in self._processing:
            return SessionState.PROCESSING_TURN
        session = await self._store.load(session_id)
        return session.state if session is not None else SessionState.NEW

    async def get_session(self, session_id: str) -> Session | None:
        return await self._store.load(session_id)

    async def delete_session(self, session_id: str) -> bool:
        return await self._store.delete(session_id)


def _context(policy: SessionPolicy, session: Session) -> dict[str, Any]:
    turns = session.transcript
    if policy.max_transcript_turns is not None:
        keep = policy.max_transcript_turns
        turns = turns[-keep:] if keep else []
    return {
        "session_id": session.id,
        "turn_number": session.turn_count + 1,
        "transcript": [{"input": t.input, "output": t.output} for t in turns],
        "summary": session.summary,
        "previous_output": session.last_output,
    }


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)
