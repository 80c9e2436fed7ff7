"""Caller-facing surface: one call per capability, user-safe outcomes.

``MedicoClient`` is what UI, CLI and HTTP layers depend on. It routes stateful
capabilities through the session state machine, turns tagged results into a
``CallOutcome`` with exactly one of ``data``/``error`` set, and maps failures
to plain messages. Raw model output never reaches ``error``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from medico.capabilities.builtin import register_builtin_capabilities
from medico.capabilities.cache import ResultCache
from medico.capabilities.invoker import CapabilityInvoker
from medico.capabilities.normalizer import normalize
from medico.capabilities.registry import CapabilityRegistry
from medico.capabilities.types import (
    Failure,
    FailureKind,
    InvocationResult,
    Recovered,
)
from medico.config.paths import get_capabilities_path
from medico.llm.gateway import ModelGateway
from medico.llm.types import GenerationParams
from medico.sessions.machine import ConcurrencyPolicy, Condenser, SessionStateMachine
from medico.sessions.store import FileSessionStore, InMemorySessionStore, SessionStore
from medico.sessions.types import SessionState

if TYPE_CHECKING:
    from medico.config.models import MedicoConfig

logger = logging.getLogger(__name__)

USER_MESSAGES: dict[FailureKind, str] = {
    FailureKind.TRANSPORT_ERROR: (
        "The service is temporarily unavailable. Please try again in a moment."
    ),
    FailureKind.UNPARSABLE_RESPONSE: (
        "We couldn't understand the response. Please try rephrasing your request."
    ),
    FailureKind.SCHEMA_VIOLATION: (
        "We couldn't understand the response. Please try rephrasing your request."
    ),
    FailureKind.INVALID_INPUT: (
        "Some of the information provided is missing or invalid. "
        "Please check your input and try again."
    ),
    FailureKind.STORE_ERROR: (
        "We couldn't save your progress. Please try again."
    ),
    FailureKind.TURN_IN_PROGRESS: (
        "Your previous answer is still being processed. Please wait a moment and try again."
    ),
}


def user_message(kind: FailureKind) -> str:
    """Plain, non-technical message for a failure kind."""
    return USER_MESSAGES[kind]


@dataclass(frozen=True)
class CallOutcome:
    """Result of a client call. Exactly one of ``data``/``error`` is set."""

    data: dict[str, Any] | None = None
    error: str | None = None
    recovered: bool = False
    notes: tuple[str, ...] = ()
    session_id: str | None = None
    state: SessionState | None = None
    failure_kind: FailureKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


OutcomeCallback = Callable[[CallOutcome], None]
BoundCall = Callable[..., Awaitable[CallOutcome]]


class MedicoClient:
    """Invoke capabilities by name and get back user-safe outcomes."""

    def __init__(
        self,
        invoker: CapabilityInvoker,
        sessions: SessionStateMachine | None = None,
        *,
        on_success: OutcomeCallback | None = None,
        on_error: OutcomeCallback | None = None,
    ) -> None:
        self._invoker = invoker
        self._sessions = sessions
        self._on_success = on_success
        self._on_error = on_error

    @property
    def invoker(self) -> CapabilityInvoker:
        return self._invoker

    @property
    def sessions(self) -> SessionStateMachine | None:
        return self._sessions

    @property
    def registry(self) -> CapabilityRegistry:
        return self._invoker.registry

    async def call(
        self,
        name: str,
        input_value: Mapping[str, Any],
        session_id: str | None = None,
    ) -> CallOutcome:
        """Call a capability.

        Stateful capabilities take a nullable ``session_id``; None starts a new
        session and the generated id is returned on the outcome.

        Raises:
            CapabilityNotFoundError: If no capability has that name.
        """
        capability = self.registry.get(name).capability

        if capability.stateful:
            if self._sessions is None:
                raise RuntimeError("stateful capabilities need a SessionStateMachine")
            turn = await self._sessions.run_turn(name, input_value, session_id)
            outcome = self._outcome(
                name, turn.result, session_id=turn.session_id, state=turn.state
            )
        elif session_id is not None:
            outcome = self._outcome(
                name,
                Failure(
                    kind=FailureKind.INVALID_INPUT,
                    message=f"capability '{name}' does not take a session id",
                    stage="input",
                ),
            )
        else:
            outcome = self._outcome(name, await self._invoker.invoke(name, input_value))

        callback = self._on_success if outcome.ok else self._on_error
        if callback is not None:
            callback(outcome)
        return outcome

    def bind(self, name: str) -> BoundCall:
        """Return a callable for one capability.

        Stateful capabilities get ``(input_value, session_id=None)``, stateless
        ones ``(input_value)``.

        Raises:
            CapabilityNotFoundError: If no capability has that name.
        """
        capability = self.registry.get(name).capability

        if capability.stateful:

            async def call_stateful(
                input_value: Mapping[str, Any], session_id: str | None = None
            ) -> CallOutcome:
                return await self.call(name, input_value, session_id)

            call_stateful.__name__ = name
            return call_stateful

        async def call_stateless(input_value: Mapping[str, Any]) -> CallOutcome:
            return await self.call(name, input_value)

        call_stateless.__name__ = name
        return call_stateless

    def _revalidate(self, name: str, result: Success | Recovered) -> InvocationResult:
        """Check a usable value against the output schema once more.

        Values may arrive as text or as an already parsed object; both go
        through the normalizer. A ``Recovered`` input stays ``Recovered``.
        """
        output_schema = self.registry.get(name).capability.output_schema
        checked = normalize(result.value, output_schema)
        if isinstance(checked, Failure):
            logger.warning(
                "client_result_rejected",
                extra={"capability": name, "failure.kind": checked.kind.value},
            )
        return _merge_notes(result, checked)

    def _outcome(
        self,
        name: str,
        result: InvocationResult,
        *,
        session_id: str | None = None,
        state: SessionState | None = None,
    ) -> CallOutcome:
        if not isinstance(result, Failure):
            result = self._revalidate(name, result)

        if isinstance(result, Failure):
            return CallOutcome(
                error=user_message(result.kind),
                session_id=session_id,
                state=state,
                failure_kind=result.kind,
            )
        recovered = isinstance(result, Recovered)
        return CallOutcome(
            data=dict(result.value),
            recovered=recovered,
            notes=result.notes if recovered else (),
            session_id=session_id,
            state=state,
        )


def _merge_notes(earlier: InvocationResult, later: InvocationResult) -> InvocationResult:
    if isinstance(later, Failure):
        return later
    notes = tuple(earlier.notes) if isinstance(earlier, Recovered) else ()
    if isinstance(later, Recovered):
        notes = (*notes, *later.notes)
    if not notes:
        return later
    return Recovered(value=later.value, notes=notes)


def create_registry(config: MedicoConfig) -> CapabilityRegistry:
    """Build the capability registry from configuration.

    Registers the built-in capabilities plus any TOML definitions found in
    ``config.capabilities_path`` (default ``~/.medico/capabilities``),
    applying per-capability overrides.
    """
    overrides = {
        name: GenerationParams(
            temperature=override.temperature,
            max_tokens=override.max_tokens,
            model=override.model,
            timeout=override.timeout_seconds,
        )
        for name, override in config.capabilities.items()
    }
    registry = CapabilityRegistry(overrides)
    register_builtin_capabilities(registry)
    capabilities_path = config.capabilities_path or get_capabilities_path()
    if capabilities_path.is_dir():
        loaded = registry.load_directory(capabilities_path)
        logger.info("capabilities_loaded", extra={"count": len(loaded)})
    return registry


def create_session_store(config: MedicoConfig) -> SessionStore:
    if config.sessions.backend == "file":
        return FileSessionStore(config.sessions.path)
    return InMemorySessionStore()


def create_client(
    config: MedicoConfig,
    *,
    gateway: ModelGateway | None = None,
    store: SessionStore | None = None,
    condenser: Condenser | None = None,
) -> MedicoClient:
    """Wire a client from configuration.

    Args:
        config: Loaded configuration.
        gateway: Gateway to use instead of one built from ``config.models``.
        store: Session store to use instead of the configured backend.
        condenser: Summary condenser for stateful capabilities without a
            summary field.
    """
    invoker = CapabilityInvoker(
        create_registry(config),
        gateway or ModelGateway.from_config(config),
        cache=ResultCache() if config.cache.enabled else None,
    )
    sessions = SessionStateMachine(
        invoker,
        store or create_session_store(config),
        concurrency=ConcurrencyPolicy(config.sessions.concurrency),
        lock_timeout=config.sessions.lock_timeout_seconds,
        condenser=condenser,
    )
    return MedicoClient(invoker, sessions)
