"""Model gateway: the single boundary between capabilities and model endpoints.

The gateway sends one rendered prompt and returns the model's raw text. Every
way the call can fail at the transport level (timeout, connection, quota,
server errors) is raised as ``TransportError`` so the invoker can hand it to
the fallback chain. Nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

import anthropic
import openai

from medico.errors import TransportError
from medico.llm.base import LLMProvider
from medico.llm.registry import create_llm_provider
from medico.llm.types import GenerationParams

if TYPE_CHECKING:
    from medico.config.models import MedicoConfig

logger = logging.getLogger(__name__)

DEFAULT_ALIAS = "default"
DEFAULT_TIMEOUT_SECONDS = 60.0

TRANSPORT_ERROR_PATTERN = re.compile(
    r"overloaded|rate.?limit|too many requests|quota|"
    r"429|500|502|503|504|"
    r"service.?unavailable|server error|internal error|"
    r"connection.?error|timeout|timed out",
    re.IGNORECASE,
)

_SDK_ERRORS: tuple[type[BaseException], ...] = (
    anthropic.APIError,
    openai.APIError,
)


def is_transport_error(error: BaseException) -> bool:
    """Check if an exception raised by a provider is a transport failure.

    Transport failures include:
    - SDK API errors (status, connection, authentication, quota)
    - Timeouts and OS-level connection errors
    - Errors whose message or status code indicates rate limiting or 5xx
    """
    if isinstance(error, (TimeoutError, ConnectionError, *_SDK_ERRORS)):
        return True

    if TRANSPORT_ERROR_PATTERN.search(str(error)):
        return True

    error_type = type(error).__name__.lower()
    if any(t in error_type for t in ("timeout", "connection", "ratelimit")):
        return True

    status_code = getattr(error, "status_code", None)
    return status_code in (408, 429, 500, 502, 503, 504)


@dataclass(frozen=True)
class ModelRoute:
    """A model alias resolved to a provider and its defaults."""

    provider: LLMProvider
    model: str | None = None
    temperature: float | None = None
    max_tokens: int = 4096


class ModelGateway:
    """Sends rendered prompts to a model endpoint and returns raw text."""

    def __init__(
        self,
        routes: dict[str, ModelRoute],
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        system: str | None = None,
    ) -> None:
        if DEFAULT_ALIAS not in routes:
            raise ValueError("ModelGateway requires a 'default' route")
        self._routes = dict(routes)
        self._timeout = timeout
        self._system = system

    @classmethod
    def for_provider(
        cls,
        provider: LLMProvider,
        *,
        model: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> ModelGateway:
        """Create a gateway that routes every call to one provider."""
        return cls({DEFAULT_ALIAS: ModelRoute(provider=provider, model=model)}, timeout=timeout)

    @classmethod
    def from_config(cls, config: MedicoConfig) -> ModelGateway:
        """Create a gateway with one route per configured model alias.

        Providers are shared between aliases that use the same provider.
        """
        providers: dict[str, LLMProvider] = {}
        routes: dict[str, ModelRoute] = {}
        for alias in config.list_models():
            model_config = config.get_model(alias)
            if model_config.provider not in providers:
                providers[model_config.provider] = create_llm_provider(
                    model_config.provider,
                    api_key=config.resolve_api_key(alias),
                    max_concurrent=config.gateway.max_concurrent,
                )
            routes[alias] = ModelRoute(
                provider=providers[model_config.provider],
                model=model_config.model,
                temperature=model_config.temperature,
                max_tokens=model_config.max_tokens,
            )
        return cls(routes, timeout=config.gateway.timeout_seconds)

    @property
    def aliases(self) -> list[str]:
        return sorted(self._routes)

    def _route(self, alias: str | None) -> ModelRoute:
        key = alias or DEFAULT_ALIAS
        if key not in self._routes:
            available = ", ".join(sorted(self._routes))
            raise KeyError(f"Unknown model alias '{key}'. Available: {available}")
        return self._routes[key]

    async def send(self, prompt: str, params: GenerationParams | None = None) -> str:
        """Send a rendered prompt and return the model's raw text.

        An empty completion is returned as ``""``; it is not an error.

        Raises:
            TransportError: The endpoint could not produce a response.
        """
        params = params or GenerationParams()
        route = self._route(params.model)
        timeout = params.timeout if params.timeout is not None else self._timeout
        temperature = (
            params.temperature if params.temperature is not None else route.temperature
        )
        max_tokens = params.max_tokens or route.max_tokens

        try:
            async with asyncio.timeout(timeout):
                completion = await route.provider.generate(
                    prompt,
                    model=route.model,
                    system=self._system,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
        except TimeoutError as e:
            logger.warning(
                "model_transport_error",
                extra={
                    "provider": route.provider.name,
                    "error.type": "timeout",
                    "timeout_s": timeout,
                },
            )
            raise TransportError(
                f"Model call timed out after {timeout:g}s", cause=e
            ) from e
        except Exception as e:
            if not is_transport_error(e):
                raise
            logger.warning(
                "model_transport_error",
                extra={
                    "provider": route.provider.name,
                    "error.type": type(e).__name__,
                    "error.message": str(e),
                },
            )
            raise TransportError(str(e) or type(e).__name__, cause=e) from e

        if completion.truncated:
            logger.warning(
                "model_output_truncated",
                extra={
                    "provider": route.provider.name,
                    "model": completion.model,
                    "max_tokens": max_tokens,
                },
            )
        return completion.text
