"""Capability registration and TOML definition loading.

Registration is where misconfiguration surfaces: templates are compiled against
the input schema, fallbacks and policies are checked for consistency with the
output schema, and any problem raises before the first call is made.
"""

from __future__ import annotations

import logging
import re
import tomllib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from medico.capabilities.schema import (
    FieldKind,
    Schema,
    ViolationKind,
    integer,
    list_of,
    obj,
    string,
)
from medico.capabilities.template import PromptTemplate, compile_template
from medico.capabilities.types import (
    CachePolicy,
    CannedResponse,
    Capability,
    Fallback,
    OutputMode,
    SessionPolicy,
    SimplifiedRetry,
)
from medico.errors import CapabilityConfigError, CapabilityNotFoundError
from medico.llm.types import GenerationParams

logger = logging.getLogger(__name__)

_CAPABILITY_NAME = re.compile(r"^[a-z][a-z0-9_]*$")

# Context merged into the input of every stateful capability before rendering
SESSION_CONTEXT_FIELDS = (
    string("session_id", required=False),
    integer("turn_number", required=False),
    list_of(
        "transcript",
        obj(
            "",
            obj("input", required=False),
            obj("output", required=False),
        ),
        required=False,
    ),
    string("summary", required=False),
    obj("previous_output", required=False),
)


@dataclass(frozen=True)
class CompiledCapability:
    """A registered capability with its templates compiled and checked."""

    capability: Capability
    input_schema: Schema
    prompt: PromptTemplate
    fallback_prompts: tuple[PromptTemplate | None, ...]

    @property
    def name(self) -> str:
        return self.capability.name


class CapabilityRegistry:
    """Registry of capabilities, looked up by name at invocation time."""

    def __init__(self, overrides: Mapping[str, GenerationParams] | None = None) -> None:
        self._capabilities: dict[str, CompiledCapability] = {}
        self._overrides = dict(overrides or {})

    def register(self, capability: Capability) -> CompiledCapability:
        """Validate, compile and register a capability.

        Raises:
            CapabilityConfigError: If the definition is inconsistent.
            TemplateError: If a template is malformed or references
                undeclared input fields.
        """
        if not _CAPABILITY_NAME.match(capability.name):
            raise CapabilityConfigError(
                f"capability name must be lowercase snake_case: {capability.name!r}"
            )
        if capability.name in self._capabilities:
            raise CapabilityConfigError(f"capability already registered: {capability.name}")

        if override := self._overrides.get(capability.name):
            capability = replace(capability, params=capability.params.merged(override))

        _check_output_mode(
            capability.name,
            capability.output_mode,
            capability.text_field,
            capability.output_schema,
        )
        _check_session_policy(capability)
        _check_output_defaults(capability)
        _check_fallbacks(capability)

        input_schema = capability.input_schema
        if capability.stateful:
            input_schema = input_schema.extend(*SESSION_CONTEXT_FIELDS)

        compiled = CompiledCapability(
            capability=capability,
            input_schema=input_schema,
            prompt=compile_template(capability.template, input_schema),
            fallback_prompts=tuple(
                compile_template(fallback.template, input_schema)
                if isinstance(fallback, SimplifiedRetry)
                else None
                for fallback in capability.fallbacks
            ),
        )
        self._capabilities[capability.name] = compiled
        logger.debug(
            "capability_registered",
            extra={
                "capability": capability.name,
                "stateful": capability.stateful,
                "fallbacks": len(capability.fallbacks),
            },
        )
        return compiled

    def register_all(self, capabilities: Iterable[Capability]) -> None:
        for capability in capabilities:
            self.register(capability)

    def load_directory(self, path: Path) -> list[str]:
        """Register every capability defined in ``*.toml`` files under a directory.

        Returns:
            Names of the capabilities registered.
        """
        names: list[str] = []
        for file_path in sorted(path.glob("*.toml")):
            for capability in load_capability_file(file_path):
                self.register(capability)
                names.append(capability.name)
        return names

    def get(self, name: str) -> CompiledCapability:
        """Get a compiled capability by name.

        Raises:
            CapabilityNotFoundError: If no capability has that name.
        """
        try:
            return self._capabilities[name]
        except KeyError:
            raise CapabilityNotFoundError(f"Unknown capability: {name}") from None

    def has(self, name: str) -> bool:
        return name in self._capabilities

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)

    @property
    def names(self) -> list[str]:
        return sorted(self._capabilities)

    def definitions(self) -> list[Capability]:
        return [self._capabilities[name].capability for name in self.names]


def _check_output_mode(
    name: str, mode: OutputMode, text_field: str, output_schema: Schema
) -> None:
    if mode is not OutputMode.TEXT:
        return
    text = output_schema.get(text_field)
    if text is None or text.kind is not FieldKind.STRING or not text.required:
        raise CapabilityConfigError(
            f"{name}: text output mode needs a required string field '{text_field}'"
        )


def _check_session_policy(capability: Capability) -> None:
    policy = capability.session
    if policy is None:
        return
    if capability.cache is not None:
        raise CapabilityConfigError(f"{capability.name}: stateful capabilities cannot be cached")

    completion = capability.output_schema.get(policy.completion_field)
    if completion is None or completion.kind is not FieldKind.BOOLEAN or not completion.required:
        raise CapabilityConfigError(
            f"{capability.name}: completion field '{policy.completion_field}' "
            "must be a required boolean in the output schema"
        )
    if policy.summary_field and capability.output_schema.get(policy.summary_field) is None:
        raise CapabilityConfigError(
            f"{capability.name}: summary field '{policy.summary_field}' "
            "is not in the output schema"
        )
    if policy.max_transcript_turns is not None and policy.max_transcript_turns < 0:
        raise CapabilityConfigError(f"{capability.name}: max_transcript_turns must be >= 0")


def _check_output_defaults(capability: Capability) -> None:
    for field_name in capability.output_defaults:
        output_field = capability.output_schema.get(field_name)
        if output_field is None or output_field.required:
            raise CapabilityConfigError(
                f"{capability.name}: output default '{field_name}' must name an "
                "optional output field"
            )


def _check_fallbacks(capability: Capability) -> None:
    retries = [f for f in capability.fallbacks if isinstance(f, SimplifiedRetry)]
    if len(retries) > 1:
        raise CapabilityConfigError(
            f"{capability.name}: at most one simplified_retry fallback may call the model again"
        )
    for fallback in capability.fallbacks:
        if isinstance(fallback, SimplifiedRetry) and fallback.output_mode is not None:
            _check_output_mode(
                capability.name,
                fallback.output_mode,
                capability.text_field,
                capability.output_schema,
            )
        if isinstance(fallback, CannedResponse):
            blocking = [
                v
                for v in capability.output_schema.validate(fallback.value)
                if not (v.kind is ViolationKind.MISSING and v.optional)
            ]
            if blocking:
                raise CapabilityConfigError(
                    f"{capability.name}: canned fallback does not satisfy the output "
                    f"schema: {'; '.join(str(v) for v in blocking)}"
                )


# --- TOML definitions -------------------------------------------------------


def _params_from_dict(data: Mapping[str, Any]) -> GenerationParams:
    return GenerationParams(
        temperature=data.get("temperature"),
        max_tokens=data.get("max_tokens"),
        model=data.get("model"),
        timeout=data.get("timeout_seconds"),
    )


def _fallback_from_dict(name: str, data: Mapping[str, Any]) -> Fallback:
    kind = data.get("type")
    if kind == SimplifiedRetry.label:
        mode = data.get("output_mode")
        return SimplifiedRetry(
            template=data["template"],
            params=_params_from_dict(data),
            output_mode=OutputMode(mode) if mode else None,
        )
    if kind == CannedResponse.label:
        return CannedResponse(value=dict(data["value"]))
    raise CapabilityConfigError(f"{name}: unknown fallback type {kind!r}")


def capability_from_dict(name: str, data: Mapping[str, Any]) -> Capability:
    """Build a capability from a parsed TOML table."""
    try:
        cache = data.get("cache")
        session = data.get("session")
        return Capability(
            name=name,
            description=data.get("description", ""),
            input_schema=Schema.from_dict(data.get("input", {})),
            output_schema=Schema.from_dict(data["output"]),
            template=data["template"],
            params=_params_from_dict(data),
            fallbacks=tuple(_fallback_from_dict(name, f) for f in data.get("fallbacks", [])),
            cache=(
                CachePolicy(
                    ttl_seconds=cache.get("ttl_seconds", 900),
                    maxsize=cache.get("maxsize", 128),
                    normalize=tuple(cache.get("normalize", ())),
                )
                if cache is not None
                else None
            ),
            session=SessionPolicy(**session) if session is not None else None,
            output_mode=OutputMode(data.get("output_mode", OutputMode.JSON.value)),
            text_field=data.get("text_field", "response"),
            output_defaults=dict(data.get("output_defaults", {})),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise CapabilityConfigError(f"invalid capability definition '{name}': {e}") from e


def load_capability_file(path: Path) -> list[Capability]:
    """Load capability definitions from a TOML file (one table per capability)."""
    with path.open("rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise CapabilityConfigError(f"{path}: {e}") from e
    return [capability_from_dict(name, table) for name, table in data.items()]
