"""Shared test fixtures and factories."""

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from medico.capabilities import (
    Capability,
    CapabilityInvoker,
    CapabilityRegistry,
    ResultCache,
    Schema,
    SessionPolicy,
    boolean,
    string,
)
from medico.config.models import MedicoConfig, ModelConfig, SessionsConfig
from medico.config.paths import get_medico_home
from medico.llm.base import LLMProvider
from medico.llm.gateway import ModelGateway
from medico.llm.types import Completion, Usage
from medico.sessions import InMemorySessionStore, SessionStateMachine

# =============================================================================
# Environment
# =============================================================================


@pytest.fixture(autouse=True)
def medico_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point MEDICO_HOME at a temporary directory for every test."""
    home = tmp_path / "medico-home"
    monkeypatch.setenv("MEDICO_HOME", str(home))
    get_medico_home.cache_clear()
    yield home
    get_medico_home.cache_clear()


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def minimal_config(tmp_path: Path) -> MedicoConfig:
    """Minimal valid configuration with in-memory sessions."""
    return MedicoConfig(
        models={
            "default": ModelConfig(
                provider="anthropic",
                model="claude-haiku-4-5-20251001",
            )
        },
        sessions=SessionsConfig(backend="memory"),
        capabilities_path=tmp_path / "capabilities",
    )


@pytest.fixture
def config_toml_content() -> str:
    """Valid TOML config content."""
    return """
[models.default]
provider = "anthropic"
model = "claude-haiku-4-5-20251001"
temperature = 0.5

[models.fast]
provider = "openai"
model = "gpt-4o-mini"

[gateway]
timeout_seconds = 30

[sessions]
backend = "memory"
concurrency = "reject"

[capabilities.summarize_notes]
model = "fast"
temperature = 0.1
"""


@pytest.fixture
def config_file(tmp_path: Path, config_toml_content: str) -> Path:
    """Create a temporary config file."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(config_toml_content)
    return config_path


# =============================================================================
# LLM Fixtures and Mocks
# =============================================================================


class MockLLMProvider(LLMProvider):
    """Scripted LLM provider for testing.

    Each call consumes the next scripted item: a string is returned as the
    model's text, an exception instance is raised. When the script runs out
    the provider answers with ``default``.
    """

    def __init__(
        self,
        responses: Sequence[str | BaseException] | None = None,
        *,
        default: str = "{}",
        delay: float = 0.0,
    ):
        self.responses = list(responses or [])
        self.default = default
        self.delay = delay
        self.calls: list[dict[str, Any]] = []
        self._response_index = 0

    @property
    def name(self) -> str:
        return "mock"

    @property
    def default_model(self) -> str:
        return "mock-model"

    @property
    def prompts(self) -> list[str]:
        return [call["prompt"] for call in self.calls]

    async def generate(
        self,
        prompt: str,
        *,
        model: str | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> Completion:
        self.calls.append(
            {
                "prompt": prompt,
                "model": model,
                "system": system,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)

        if self._response_index < len(self.responses):
            item = self.responses[self._response_index]
            self._response_index += 1
        else:
            item = self.default

        if isinstance(item, BaseException):
            raise item

        return Completion(
            text=item,
            model=model or "mock-model",
            usage=Usage(input_tokens=100, output_tokens=50),
            stop_reason="end_turn",
        )


def make_gateway(provider: LLMProvider, timeout: float = 5.0) -> ModelGateway:
    return ModelGateway.for_provider(provider, timeout=timeout)


# =============================================================================
# Capability Factories
# =============================================================================


def make_summarize(**kwargs: Any) -> Capability:
    """A "summarize" capability: notes in, required summary out."""
    defaults: dict[str, Any] = {
        "name": "summarize",
        "input_schema": Schema.of(string("notes")),
        "output_schema": Schema.of(string("summary")),
        "template": "Summarize:\n{{ notes }}",
    }
    defaults.update(kwargs)
    return Capability(**defaults)


def make_case(**kwargs: Any) -> Capability:
    """A stateful "case" capability that completes when the model says so."""
    defaults: dict[str, Any] = {
        "name": "case",
        "input_schema": Schema.of(
            string("topic", required=False),
            string("answer", required=False),
        ),
        "output_schema": Schema.of(
            string("prompt"),
            boolean("is_completed"),
            string("summary", required=False),
        ),
        "template": (
            "{% if previous_output %}Turn {{ turn_number }}. "
            "Answer: {{ answer }}{% else %}New case: {{ topic }}{% endif %}"
        ),
        "session": SessionPolicy(summary_field="summary", id_prefix="case"),
    }
    defaults.update(kwargs)
    return Capability(**defaults)


def make_invoker(
    provider: LLMProvider,
    *capabilities: Capability,
    cache: ResultCache | None = None,
) -> CapabilityInvoker:
    registry = CapabilityRegistry()
    registry.register_all(capabilities)
    return CapabilityInvoker(registry, make_gateway(provider), cache=cache)


def make_machine(
    provider: LLMProvider,
    *capabilities: Capability,
    **kwargs: Any,
) -> SessionStateMachine:
    store = kwargs.pop("store", None)
    if store is None:
        store = InMemorySessionStore()
    return SessionStateMachine(make_invoker(provider, *capabilities), store, **kwargs)


# =============================================================================
# CLI Fixtures
# =============================================================================


@pytest.fixture
def restore_logging():
    """Undo root logger changes made by configure_logging()."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner with colors disabled."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1"})
