"""Filesystem locations for Medico's local state.

Everything lives under one home directory: ``$MEDICO_HOME`` when set,
otherwise ``~/.medico``. Nothing here creates directories; the code that
writes to a location is responsible for ``mkdir``.
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "MEDICO_HOME"

CONFIG_FILENAME = "config.toml"
SYSTEM_CONFIG_PATH = Path("/etc/medico") / CONFIG_FILENAME


@lru_cache(maxsize=1)
def get_medico_home() -> Path:
    """Home directory, cached for the life of the process.

    Call ``get_medico_home.cache_clear()`` after changing ``MEDICO_HOME``.
    """
    override = os.environ.get(ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser().absolute()
    return Path.home() / ".medico"


def get_config_path() -> Path:
    return get_medico_home() / CONFIG_FILENAME


def get_logs_path() -> Path:
    """Daily JSONL log files."""
    return get_medico_home() / "logs"


def get_sessions_path() -> Path:
    """Default directory of the file session store."""
    return get_medico_home() / "sessions"


def get_capabilities_path() -> Path:
    """Scanned for ``*.toml`` capability definitions at startup."""
    return get_medico_home() / "capabilities"


def get_all_paths() -> dict[str, Path]:
    """Every location above, keyed by a short label (for ``medico paths``)."""
    return {
        "home": get_medico_home(),
        "config": get_config_path(),
        "logs": get_logs_path(),
        "sessions": get_sessions_path(),
        "capabilities": get_capabilities_path(),
    }
