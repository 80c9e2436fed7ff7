"""Configuration models using Pydantic."""

import logging
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, model_validator

from medico.config.paths import get_sessions_path
from medico.errors import MedicoError

logger = logging.getLogger(__name__)

ProviderName = Literal["anthropic", "openai"]

# Consulted when a provider section has no api_key
PROVIDER_ENV_VARS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


class ConfigError(MedicoError):
    """Configuration error."""


class ModelConfig(BaseModel):
    """A model alias: which provider and model id to call, and how.

    Leave temperature unset for reasoning models that reject it.
    """

    provider: ProviderName
    model: str
    temperature: float | None = None
    max_tokens: int = Field(default=4096, gt=0)


class ProviderConfig(BaseModel):
    """Settings shared by every alias using one provider."""

    api_key: SecretStr | None = None


class GatewayConfig(BaseModel):
    """Configuration for calls to the generative model endpoint."""

    timeout_seconds: float = Field(default=60.0, gt=0)
    max_concurrent: int = Field(default=4, ge=1)


class SessionsConfig(BaseModel):
    """Configuration for multi-turn session storage.

    A second turn for a session that already has one in flight either waits
    for it ("wait", optionally bounded by lock_timeout_seconds) or is rejected
    ("reject").
    """

    backend: Literal["memory", "file"] = "file"
    path: Path = Field(default_factory=get_sessions_path)
    concurrency: Literal["wait", "reject"] = "wait"
    lock_timeout_seconds: float | None = None


class CacheConfig(BaseModel):
    """Configuration for capability result caching."""

    enabled: bool = True


class CapabilityOverride(BaseModel):
    """Per-capability generation overrides from config."""

    model: str | None = None  # model alias, resolved against [models]
    temperature: float | None = None
    max_tokens: int | None = None
    timeout_seconds: float | None = None


class MedicoConfig(BaseModel):
    """Root of ``config.toml``.

    ``[models.default]`` is required; every other alias is optional and may
    be referenced from ``[capabilities.<name>] model = "<alias>"``.
    """

    models: dict[str, ModelConfig] = Field(default_factory=dict)
    anthropic: ProviderConfig | None = None
    openai: ProviderConfig | None = None
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    # Directory of extra TOML capability definitions
    capabilities_path: Path | None = None
    capabilities: dict[str, CapabilityOverride] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_aliases(self) -> "MedicoConfig":
        if "default" not in self.models:
            raise ValueError("No default model configured. Add [models.default]")
        unknown = [
            f"[capabilities.{name}] references unknown model alias '{override.model}'"
            for name, override in self.capabilities.items()
            if override.model is not None and override.model not in self.models
        ]
        if unknown:
            raise ValueError("; ".join(unknown))
        return self

    def get_model(self, alias: str) -> ModelConfig:
        """Look up a model alias.

        Raises:
            ConfigError: If the alias is not configured.
        """
        try:
            return self.models[alias]
        except KeyError:
            available = ", ".join(self.list_models())
            raise ConfigError(f"Unknown model alias '{alias}'. Available: {available}") from None

    def list_models(self) -> list[str]:
        return sorted(self.models)

    @property
    def default_model(self) -> ModelConfig:
        return self.get_model("default")

    def provider_config(self, provider: ProviderName) -> ProviderConfig | None:
        return self.anthropic if provider == "anthropic" else self.openai

    def resolve_api_key(self, alias: str) -> SecretStr | None:
        """API key for the provider behind ``alias``.

        The provider section's ``api_key`` wins over the environment variable
        named in ``PROVIDER_ENV_VARS``. Returns None when neither is set, in
        which case the SDK applies its own lookup.
        """
        provider = self.get_model(alias).provider
        section = self.provider_config(provider)
        if section is not None and section.api_key is not None:
            return section.api_key
        if value := os.environ.get(PROVIDER_ENV_VARS[provider]):
            return SecretStr(value)
        logger.warning("api_key_missing", extra={"alias": alias, "provider": provider})
        return None
