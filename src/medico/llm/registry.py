"""Provider construction by name."""

from collections.abc import Callable

from pydantic import SecretStr

from medico.config.models import ProviderName
from medico.llm.anthropic import AnthropicProvider
from medico.llm.base import LLMProvider
from medico.llm.openai import OpenAIProvider

_FACTORIES: dict[str, Callable[..., LLMProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
}


def create_llm_provider(
    provider: ProviderName,
    api_key: str | SecretStr | None = None,
    *,
    max_concurrent: int = 4,
) -> LLMProvider:
    """Create a provider instance.

    Raises:
        ValueError: If the provider name is unknown.
    """
    try:
        factory = _FACTORIES[provider]
    except KeyError:
        raise ValueError(f"Unknown LLM provider: {provider}") from None
    key = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
    return factory(api_key=key, max_concurrent=max_concurrent)
