"""Configuration module."""

from medico.config.loader import get_default_config, load_config
from medico.config.models import (
    CacheConfig,
    CapabilityOverride,
    ConfigError,
    GatewayConfig,
    MedicoConfig,
    ModelConfig,
    ProviderConfig,
    SessionsConfig,
)
from medico.config.paths import (
    get_capabilities_path,
    get_config_path,
    get_logs_path,
    get_medico_home,
    get_sessions_path,
)

__all__ = [
    "CacheConfig",
    "CapabilityOverride",
    "ConfigError",
    "GatewayConfig",
    "MedicoConfig",
    "ModelConfig",
    "ProviderConfig",
    "SessionsConfig",
    "get_capabilities_path",
    "get_config_path",
    "get_default_config",
    "get_logs_path",
    "get_medico_home",
    "get_sessions_path",
    "load_config",
]
