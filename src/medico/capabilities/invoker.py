"""Capability invoker: validate, render, call the model, normalize, fall back.

One call runs the primary attempt and then, only if that attempt fails in a
way the fallback chain handles, each declared fallback in order. The chain
stops at the first ``Success`` or ``Recovered``. Fallbacks never have their
own fallbacks, and registration guarantees at most one of them goes back to
the model, so a single call reaches the model at most twice.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from medico.capabilities.cache import ResultCache
from medico.capabilities.normalizer import excerpt, normalize
from medico.capabilities.registry import CapabilityRegistry, CompiledCapability
from medico.capabilities.template import PromptTemplate
from medico.capabilities.types import (
    CannedResponse,
    Failure,
    FailureKind,
    InvocationResult,
    OutputMode,
    Recovered,
    SimplifiedRetry,
    Success,
)
from medico.errors import CapabilityConfigError, TemplateError, TransportError
from medico.llm.gateway import ModelGateway
from medico.llm.types import GenerationParams

logger = logging.getLogger(__name__)

PRIMARY_STAGE = "primary"
CANNED_NOTE = "canned fallback response used after primary failure"

_FORMAT_INSTRUCTIONS = (
    "Respond with a single JSON object and nothing else. "
    "It must match this JSON Schema:\n{schema}"
)


def _format_instructions(compiled: CompiledCapability) -> str:
    schema = compiled.capability.output_schema.to_json_schema()
    return _FORMAT_INSTRUCTIONS.format(schema=json.dumps(schema, ensure_ascii=False))


class CapabilityInvoker:
    """Runs registered capabilities against the model gateway."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        gateway: ModelGateway,
        *,
        cache: ResultCache | None = None,
    ) -> None:
        self._registry = registry
        self._gateway = gateway
        self._cache = cache
        self.check_model_aliases()

    def check_model_aliases(self) -> None:
        """Check every registered capability only names model aliases the gateway routes.

        Run on construction; call again after registering more capabilities.

        Raises:
            CapabilityConfigError: If a capability or one of its fallbacks names
                an unknown alias.
        """
        aliases = set(self._gateway.aliases)
        for capability in self._registry.definitions():
            params = [("params", capability.params)] + [
                (f"fallback[{index}]", fallback.params)
                for index, fallback in enumerate(capability.fallbacks, start=1)
                if isinstance(fallback, SimplifiedRetry) and fallback.params is not None
            ]
            for where, generation in params:
                if generation.model is not None and generation.model not in aliases:
                    raise CapabilityConfigError(
                        f"{capability.name}: {where} uses unknown model alias "
                        f"'{generation.model}' (available: {', '.join(sorted(aliases))})"
                    )

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @property
    def cache(self) -> ResultCache | None:
        return self._cache

    async def invoke(
        self,
        name: str,
        input_value: Any,
        *,
        context: Mapping[str, Any] | None = None,
    ) -> InvocationResult:
        """Invoke a capability by name.

        Args:
            name: Registered capability name.
            input_value: Value checked against the capability's input schema.
            context: Extra render-only fields (session context) merged over the
                validated input. Never part of the cache key.

        Raises:
            CapabilityNotFoundError: If no capability has that name.
        """
        compiled = self._registry.get(name)
        capability = compiled.capability
        started = time.monotonic()

        if not isinstance(input_value, Mapping):
            return Failure(
                kind=FailureKind.INVALID_INPUT,
                message=f"input must be an object, got {type(input_value).__name__}",
                stage="input",
            )
        value = capability.input_schema.apply_defaults(input_value)
        violations = capability.input_schema.validate(value)
        if violations:
            logger.info(
                "capability_invalid_input",
                extra={"capability": name, "violations": [str(v) for v in violations]},
            )
            return Failure(
                kind=FailureKind.INVALID_INPUT,
                message="; ".join(str(v) for v in violations),
                stage="input",
            )

        if self._cache is not None and (cached := self._cache.get(capability, value)):
            logger.debug("cache_hit", extra={"capability": name})
            return cached

        render_input = {**value, **(context or {})}
        result = await self._attempt(
            compiled,
            compiled.prompt,
            capability.params,
            capability.output_mode,
            render_input,
            PRIMARY_STAGE,
        )
        attempts = [PRIMARY_STAGE]

        if isinstance(result, Failure) and result.kind.falls_back:
            for index, fallback in enumerate(capability.fallbacks, start=1):
                stage = f"fallback[{index}]:{fallback.label}"
                attempts.append(stage)
                logger.warning(
                    "fallback_attempt",
                    extra={
                        "capability": name,
                        "stage": stage,
                        "previous_failure": result.kind.value,
                    },
                )
                if isinstance(fallback, SimplifiedRetry):
                    prompt = compiled.fallback_prompts[index - 1]
                    assert prompt is not None
                    result = await self._attempt(
                        compiled,
                        prompt,
                        capability.params.merged(fallback.params),
                        fallback.output_mode or capability.output_mode,
                        render_input,
                        stage,
                    )
                elif isinstance(fallback, CannedResponse):
                    result = _canned(fallback, compiled, stage)
                if not isinstance(result, Failure):
                    break

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if isinstance(result, Failure):
            result = replace(result, attempts=tuple(attempts))
            logger.error(
                "capability_failed",
                extra={
                    "capability": name,
                    "failure.kind": result.kind.value,
                    "failure.stage": result.stage,
                    "failure.message": result.message,
                    "attempts": list(attempts),
                    "duration_ms": elapsed_ms,
                },
            )
            return result

        result = _apply_output_defaults(result, capability.output_defaults)
        if isinstance(result, Success) and self._cache is not None:
            self._cache.set(capability, value, result)
        logger.info(
            "capability_invoked",
            extra={
                "capability": name,
                "result": "success" if isinstance(result, Success) else "recovered",
                "stage": attempts[-1],
                "duration_ms": elapsed_ms,
            },
        )
        return result

    async def _attempt(
        self,
        compiled: CompiledCapability,
        prompt: PromptTemplate,
        params: GenerationParams,
        output_mode: OutputMode,
        render_input: Mapping[str, Any],
        stage: str,
    ) -> InvocationResult:
        capability = compiled.capability
        try:
            prompt_text = prompt.render(render_input)
        except TemplateError as e:
            return Failure(kind=FailureKind.INVALID_INPUT, message=str(e), stage=stage)
        if output_mode is OutputMode.JSON:
            prompt_text = f"{prompt_text}\n\n{_format_instructions(compiled)}"

        try:
            raw = await self._gateway.send(prompt_text, params)
        except TransportError as e:
            return Failure(kind=FailureKind.TRANSPORT_ERROR, message=str(e), stage=stage)

        logger.debug(
            "model_response",
            extra={"capability": capability.name, "stage": stage, "raw_excerpt": excerpt(raw)},
        )

        if output_mode is OutputMode.TEXT:
            text = raw.strip()
            if not text:
                return Failure(
                    kind=FailureKind.UNPARSABLE_RESPONSE,
                    message="model returned an empty response",
                    stage=stage,
                )
            result = normalize({capability.text_field: text}, capability.output_schema)
        else:
            result = normalize(raw, capability.output_schema)

        if isinstance(result, Failure):
            return replace(result, stage=stage)
        return result


def _canned(
    fallback: CannedResponse,
    compiled: CompiledCapability,
    stage: str,
) -> InvocationResult:
    result = normalize(dict(fallback.value), compiled.capability.output_schema)
    if isinstance(result, Failure):
        return replace(result, stage=stage)
    notes = (*result.notes, CANNED_NOTE) if isinstance(result, Recovered) else (CANNED_NOTE,)
    return Recovered(value=result.value, notes=notes)


def _apply_output_defaults(
    result: Success | Recovered,
    defaults: Mapping[str, Any],
) -> Success | Recovered:
    if not defaults:
        return result
    value = dict(result.value)
    for key, default in defaults.items():
        if value.get(key) is None:
            value[key] = default
    return replace(result, value=value)
