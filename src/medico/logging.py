"""Logging setup for Medico.

Entry points (the CLI, or an application embedding the client) call
``configure_logging()`` once at startup. Library modules only ever do
``logging.getLogger(__name__)`` and log short event names with details in
``extra=``, e.g. ``logger.warning("fallback_attempt", extra={"stage": ...})``.

Levels:
- DEBUG: Rendered prompts, raw model text excerpts, cache hits
- INFO: Capability invocations, committed session turns
- WARNING: Fallback attempts, transport errors, session store failures
- ERROR: Exhausted fallback chains

The optional JSONL sink keeps ``extra`` fields as structured data. API keys
and bearer tokens are masked in everything it writes.
"""

import json
import logging
import os
import re
from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any, TextIO

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
DEFAULT_LOG_RETENTION_DAYS = 7

# Group 1 of each pattern is the part that gets masked
SECRET_PATTERNS: tuple[str, ...] = (
    # Model provider API keys
    r"\b(sk-[A-Za-z0-9_-]{20,})\b",
    r"\b(AIza[0-9A-Za-z\-_]{20,})\b",
    # NAME_KEY=value / NAME_TOKEN: value
    r"\b[A-Z0-9_]+(?:KEY|TOKEN|SECRET|PASSWORD)\s*[=:]\s*([^\s\"']{8,})",
    r"\bBearer\s+([A-Za-z0-9._\-+=]{20,})\b",
)

# Third-party loggers that are too noisy below WARNING
NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "openai")

# Attributes every LogRecord has; anything else arrived through extra=
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
    "component",
}


class SecretRedactor:
    """Masks secrets, keeping the first and last four characters of long ones."""

    def __init__(self, patterns: Iterable[str] = SECRET_PATTERNS, *, enabled: bool = True):
        self.enabled = enabled
        self._patterns = [re.compile(p, re.IGNORECASE) for p in patterns]

    def redact(self, text: str) -> str:
        if not self.enabled or not text:
            return text
        for pattern in self._patterns:
            text = pattern.sub(_mask, text)
        return text

    def redact_value(self, value: Any) -> Any:
        """Redact every string inside a JSON-like value."""
        if isinstance(value, str):
            return self.redact(value)
        if isinstance(value, dict):
            return {key: self.redact_value(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.redact_value(item) for item in value]
        return value


def _mask(match: re.Match[str]) -> str:
    secret = match.group(1)
    if "..." in secret:
        return match.group(0)
    masked = "***" if len(secret) < 12 else f"{secret[:4]}...{secret[-4:]}"
    offset = match.start()
    start, end = match.span(1)
    full = match.group(0)
    return full[: start - offset] + masked + full[end - offset :]


_redactor = SecretRedactor()


def configure_redaction(enabled: bool = True, extra_patterns: Iterable[str] = ()) -> None:
    """Replace the redactor used by the JSONL sink."""
    global _redactor
    _redactor = SecretRedactor((*SECRET_PATTERNS, *extra_patterns), enabled=enabled)


def prune_old_logs(logs_dir: Path, retention_days: int = DEFAULT_LOG_RETENTION_DAYS) -> int:
    """Delete daily ``YYYY-MM-DD.jsonl`` files older than the retention period.

    Files whose name is not a date are left alone.

    Returns:
        Number of files deleted.
    """
    if not logs_dir.is_dir():
        return 0

    cutoff = datetime.now(UTC).date() - timedelta(days=retention_days)
    deleted = 0
    for path in logs_dir.glob("*.jsonl"):
        try:
            day = date.fromisoformat(path.stem)
        except ValueError:
            continue
        if day < cutoff:
            path.unlink(missing_ok=True)
            deleted += 1
    return deleted


def _component(logger_name: str) -> str:
    """medico.capabilities.invoker -> capabilities; httpx -> httpx."""
    parts = logger_name.split(".")
    if parts[0] == "medico" and len(parts) > 1:
        return parts[1]
    return parts[0]


class JSONLHandler(logging.Handler):
    """Writes one JSON object per record to ``<logs_dir>/<YYYY-MM-DD>.jsonl``.

    A new file is opened when the UTC date changes, and files past the
    retention period are pruned at that point.
    """

    def __init__(
        self,
        logs_dir: Path,
        retention_days: int = DEFAULT_LOG_RETENTION_DAYS,
    ):
        super().__init__()
        self.logs_dir = logs_dir
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        self.retention_days = retention_days
        self._day: date | None = None
        self._stream: TextIO | None = None

    def _stream_for(self, day: date) -> TextIO:
        if self._stream is None or day != self._day:
            self._close_stream()
            self._stream = (self.logs_dir / f"{day.isoformat()}.jsonl").open(
                "a", encoding="utf-8"
            )
            self._day = day
            prune_old_logs(self.logs_dir, self.retention_days)
        return self._stream

    def _close_stream(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def build_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "component": _component(record.name),
            "logger": record.name,
            "message": _redactor.redact(record.getMessage()),
        }
        if record.exc_info:
            formatter = self.formatter or logging.Formatter()
            entry["exception"] = _redactor.redact(formatter.formatException(record.exc_info))

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            # Round-trip so non-JSON values are stringified before redaction
            entry["extra"] = _redactor.redact_value(json.loads(json.dumps(extra, default=str)))
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(self.build_entry(record), ensure_ascii=False)
            stream = self._stream_for(datetime.now(UTC).date())
            stream.write(line + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        self._close_stream()
        super().close()


class ComponentFormatter(logging.Formatter):
    """Adds ``%(component)s`` (the package below ``medico``) to records."""

    def format(self, record: logging.LogRecord) -> str:
        record.component = _component(record.name)
        return super().format(record)


def _resolve_level(level: str | None) -> int:
    if level is None:
        level = os.environ.get("MEDICO_LOG_LEVEL", "INFO")
    level = level.upper()
    return getattr(logging, level) if level in LOG_LEVELS else logging.INFO


def configure_logging(
    level: str | None = None,
    use_rich: bool = False,
    log_to_file: bool = False,
) -> None:
    """Configure the root logger.

    Args:
        level: DEBUG, INFO, WARNING or ERROR. If None, uses the
            MEDICO_LOG_LEVEL env var, then INFO.
        use_rich: Log to the console through Rich instead of a plain stream.
        log_to_file: Also write JSONL files under ``$MEDICO_HOME/logs``.
    """
    from medico.config.paths import get_logs_path

    log_level = _resolve_level(level)

    console_handler: logging.Handler
    if use_rich:
        from rich.logging import RichHandler

        console_handler = RichHandler(show_path=False, markup=False, rich_tracebacks=False)
        console_handler.setFormatter(ComponentFormatter("%(component)s | %(message)s"))
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(
            ComponentFormatter(
                "%(asctime)s %(levelname)-8s %(component)s | %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    handlers = [console_handler]

    if log_to_file:
        file_handler = JSONLHandler(get_logs_path())
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
