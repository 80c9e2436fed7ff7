"""Anthropic Claude provider (Messages API)."""

import asyncio
import logging
import time
from typing import Any

import anthropic

from medico.llm.base import LLMProvider
from medico.llm.types import Completion, Usage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-haiku-4-5-20251001"


class AnthropicProvider(LLMProvider):
    """Anthropic provider with a bounded number of in-flight requests."""

    def __init__(self, api_key: str | None = None, max_concurrent: int = 4):
        self._client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return DEFAULT_MODEL

    async def generate(
        self,
        prompt: str,
        *,
        model: str | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> Completion:
        request: dict[str, Any] = {
            "model": model or self.default_model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            request["system"] = system
        if temperature is not None:
            request["temperature"] = temperature

        async with self._semaphore:
            started = time.monotonic()
            response = await self._client.messages.create(**request)
            duration_ms = int((time.monotonic() - started) * 1000)

        logger.debug(
            "model_call_complete",
            extra={
                "provider": self.name,
                "model": response.model,
                "duration_ms": duration_ms,
                "tokens_in": response.usage.input_tokens,
                "tokens_out": response.usage.output_tokens,
                "stop_reason": response.stop_reason,
            },
        )
        return Completion(
            text="".join(block.text for block in response.content if block.type == "text"),
            model=response.model,
            usage=Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            ),
            stop_reason=response.stop_reason,
        )
