"""Model providers and the gateway capabilities call through."""

from medico.llm.anthropic import AnthropicProvider
from medico.llm.base import LLMProvider
from medico.llm.gateway import ModelGateway, ModelRoute, is_transport_error
from medico.llm.openai import OpenAIProvider
from medico.llm.registry import ProviderName, create_llm_provider
from medico.llm.types import Completion, GenerationParams, Usage

__all__ = [
    "AnthropicProvider",
    "Completion",
    "GenerationParams",
    "LLMProvider",
    "ModelGateway",
    "ModelRoute",
    "OpenAIProvider",
    "ProviderName",
    "Usage",
    "create_llm_provider",
    "is_transport_error",
]
