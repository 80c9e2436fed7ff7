"""OpenAI provider (Responses API)."""

import asyncio
import logging
import time
from typing import Any

import openai

from medico.llm.base import LLMProvider
from medico.llm.types import Completion, Usage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class OpenAIProvider(LLMProvider):
    """OpenAI provider with a bounded number of in-flight requests."""

    def __init__(self, api_key: str | None = None, max_concurrent: int = 4):
        self._client = openai.AsyncOpenAI(api_key=api_key, max_retries=0)
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @property
    def name(self) -> str:
        return "openai"

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
            "input": prompt,
            "max_output_tokens": max_tokens,
        }
        if system:
            request["instructions"] = system
        if temperature is not None:
            request["temperature"] = temperature

        async with self._semaphore:
            started = time.monotonic()
            response = await self._client.responses.create(**request)
            duration_ms = int((time.monotonic() - started) * 1000)

        # Incomplete responses carry the reason (e.g. max_output_tokens)
        details = response.incomplete_details
        stop_reason = details.reason if details is not None else response.status
        usage = (
            Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )
            if response.usage
            else None
        )

        logger.debug(
            "model_call_complete",
            extra={
                "provider": self.name,
                "model": response.model,
                "duration_ms": duration_ms,
                "tokens_in": usage.input_tokens if usage else None,
                "tokens_out": usage.output_tokens if usage else None,
                "stop_reason": stop_reason,
            },
        )
        return Completion(
            text=response.output_text,
            model=response.model,
            usage=usage,
            stop_reason=stop_reason,
        )
