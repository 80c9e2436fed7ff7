"""Capability definitions and invocation result types."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from medico.capabilities.schema import Schema
from medico.llm.types import GenerationParams


class FailureKind(str, Enum):
    """Why an invocation produced no usable value."""

    INVALID_INPUT = "invalid_input"
    TRANSPORT_ERROR = "transport_error"
    UNPARSABLE_RESPONSE = "unparsable_response"
    SCHEMA_VIOLATION = "schema_violation"
    STORE_ERROR = "store_error"
    TURN_IN_PROGRESS = "turn_in_progress"

    @property
    def falls_back(self) -> bool:
        """Whether this failure is handed to the capability's fallback chain."""
        return self in (
            FailureKind.TRANSPORT_ERROR,
            FailureKind.UNPARSABLE_RESPONSE,
            FailureKind.SCHEMA_VIOLATION,
        )


@dataclass(frozen=True, slots=True)
class Success:
    """The value satisfies the output schema."""

    value: dict[str, Any]
    cached: bool = False

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Recovered:
    """A best-effort value reconstructed from a response that missed the schema.

    ``notes`` says what was done (which fields were defaulted, or that a canned
    fallback answer was used).
    """

    value: dict[str, Any]
    notes: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Failure:
    """No usable value.

    ``message`` is for logs and developers; ``detail`` may hold an excerpt of
    the raw model output and must never be shown to end users.
    """

    kind: FailureKind
    message: str
    stage: str | None = None
    attempts: tuple[str, ...] = ()
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return False


InvocationResult = Success | Recovered | Failure


class OutputMode(str, Enum):
    """How raw model text becomes a structured value."""

    JSON = "json"
    # Raw text is wrapped as {text_field: text} before validation
    TEXT = "text"


@dataclass(frozen=True)
class SimplifiedRetry:
    """Fallback: ask the model once more with a simpler prompt."""

    template: str
    params: GenerationParams | None = None
    output_mode: OutputMode | None = None

    label = "simplified_retry"


@dataclass(frozen=True)
class CannedResponse:
    """Fallback: return a fixed value without calling the model."""

    value: Mapping[str, Any]

    label = "canned_response"


Fallback = SimplifiedRetry | CannedResponse


@dataclass(frozen=True)
class CachePolicy:
    """Result caching for a stateless capability.

    ``normalize`` names top-level string input fields that are trimmed,
    lowercased and whitespace-collapsed before the cache key is derived.
    """

    ttl_seconds: int = 900
    maxsize: int = 128
    normalize: tuple[str, ...] = ()


@dataclass(frozen=True)
class SessionPolicy:
    """Marks a capability as multi-turn.

    ``completion_field`` must be a required boolean in the output schema.
    ``summary_field`` names an output field whose latest value becomes the
    condensed ``summary`` context for the next turn. When
    ``max_transcript_turns`` is set only that many recent turns are merged
    into the prompt (the stored transcript keeps every turn).
    """

    completion_field: str = "is_completed"
    summary_field: str | None = None
    max_transcript_turns: int | None = None
    id_prefix: str | None = None


@dataclass(frozen=True)
class Capability:
    """Immutable definition of a named capability."""

    name: str
    input_schema: Schema
    output_schema: Schema
    template: str
    description: str = ""
    params: GenerationParams = field(default_factory=GenerationParams)
    fallbacks: tuple[Fallback, ...] = ()
    cache: CachePolicy | None = None
    session: SessionPolicy | None = None
    output_mode: OutputMode = OutputMode.JSON
    text_field: str = "response"
    output_defaults: Mapping[str, Any] = field(default_factory=dict)

    @property
    def stateful(self) -> bool:
        return self.session is not None
