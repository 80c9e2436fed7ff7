"""Read ``config.toml`` into a validated ``MedicoConfig``."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from medico.config.models import PROVIDER_ENV_VARS, MedicoConfig, ModelConfig
from medico.config.paths import SYSTEM_CONFIG_PATH, get_config_path


def config_search_path() -> list[Path]:
    """Candidate config files, first match wins.

    ``./medico.toml`` lets a project carry its own settings, then the user's
    ``$MEDICO_HOME/config.toml``, then the system-wide file.
    """
    return [Path.cwd() / "medico.toml", get_config_path(), SYSTEM_CONFIG_PATH]


def _find_config(path: Path | None) -> Path:
    if path is not None:
        explicit = Path(path).expanduser()
        if not explicit.is_file():
            raise FileNotFoundError(f"Config file not found: {explicit}")
        return explicit

    candidates = config_search_path()
    found = next((p for p in candidates if p.is_file()), None)
    if found is None:
        searched = ", ".join(str(p) for p in candidates)
        raise FileNotFoundError(f"No config file found. Searched: {searched}")
    return found


def _apply_env_keys(raw: dict[str, Any]) -> None:
    # Only sections present in the file pick up env keys; the rest resolve lazily
    for provider, env_var in PROVIDER_ENV_VARS.items():
        section = raw.get(provider)
        if isinstance(section, dict) and section.get("api_key") is None:
            if value := os.environ.get(env_var):
                section["api_key"] = SecretStr(value)


def load_config(path: Path | None = None) -> MedicoConfig:
    """Load and validate configuration.

    Args:
        path: Explicit config file. If None, ``config_search_path()`` is tried
            in order.

    Raises:
        FileNotFoundError: If the explicit file is missing or no candidate exists.
        tomllib.TOMLDecodeError: If the file is not valid TOML.
        pydantic.ValidationError: If the content does not validate.
    """
    config_path = _find_config(path)
    with config_path.open("rb") as f:
        raw = tomllib.load(f)
    _apply_env_keys(raw)
    return MedicoConfig.model_validate(raw)


def get_default_config() -> MedicoConfig:
    """Configuration used when no file exists: one Anthropic default model."""
    return MedicoConfig(
        models={"default": ModelConfig(provider="anthropic", model="claude-haiku-4-5-20251001")}
    )
