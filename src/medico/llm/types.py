"""Types exchanged between the model gateway and providers."""

from dataclasses import dataclass, fields, replace

# Provider stop reasons meaning the output hit the token limit
TRUNCATION_STOP_REASONS = frozenset({"max_tokens", "max_output_tokens", "length"})


@dataclass(frozen=True)
class Usage:
    """Token usage for one model call."""

    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class Completion:
    """Raw text produced by one model call."""

    text: str
    model: str
    usage: Usage | None = None
    stop_reason: str | None = None

    @property
    def truncated(self) -> bool:
        return self.stop_reason in TRUNCATION_STOP_REASONS


@dataclass(frozen=True)
class GenerationParams:
    """Per-capability generation parameters sent to the model endpoint.

    ``model`` is a config alias (``[models.<alias>]``), not a provider model id.
    ``None`` values fall back to the gateway's defaults.
    """

    temperature: float | None = None
    max_tokens: int | None = None
    model: str | None = None
    timeout: float | None = None

    def merged(self, override: "GenerationParams | None") -> "GenerationParams":
        """Return these params with any non-None values from ``override`` applied."""
        if override is None:
            return self
        changes = {
            f.name: getattr(override, f.name)
            for f in fields(override)
            if getattr(override, f.name) is not None
        }
        return replace(self, **changes)
