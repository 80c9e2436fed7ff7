"""Tests for the capability invoker and fallback chain."""

import asyncio
import json

import pytest

from medico.capabilities import (
    CachePolicy,
    CannedResponse,
    CapabilityInvoker,
    CapabilityRegistry,
    Failure,
    FailureKind,
    OutputMode,
    Recovered,
    ResultCache,
    Schema,
    SimplifiedRetry,
    Success,
    integer,
    list_of,
    string,
)
from medico.capabilities.invoker import CANNED_NOTE
from medico.errors import CapabilityConfigError, CapabilityNotFoundError
from medico.llm.gateway import ModelGateway, ModelRoute
from medico.llm.types import GenerationParams
from tests.conftest import MockLLMProvider, make_invoker, make_summarize

SIMPLE_RETRY = SimplifiedRetry(template="Summarize briefly: {{ notes }}")
CANNED = CannedResponse(value={"summary": "Summary unavailable."})


class TestModelAliases:
    """Model aliases named by capabilities are checked when the invoker is built."""

    def test_unknown_capability_alias(self):
        capability = make_summarize(params=GenerationParams(model="fast"))
        with pytest.raises(CapabilityConfigError, match="unknown model alias 'fast'"):
            make_invoker(MockLLMProvider(), capability)

    def test_unknown_fallback_alias(self):
        retry = SimplifiedRetry(
            template="Summarize briefly: {{ notes }}", params=GenerationParams(model="tiny")
        )
        with pytest.raises(CapabilityConfigError, match=r"fallback\[1\].*'tiny'"):
            make_invoker(MockLLMProvider(), make_summarize(fallbacks=(retry,)))

    async def test_known_alias_is_routed(self):
        default, fast = MockLLMProvider(), MockLLMProvider(['{"summary": "quick"}'])
        gateway = ModelGateway(
            {"default": ModelRoute(provider=default), "fast": ModelRoute(provider=fast)}
        )
        registry = CapabilityRegistry()
        registry.register(make_summarize(params=GenerationParams(model="fast")))
        invoker = CapabilityInvoker(registry, gateway)

        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert result == Success(value={"summary": "quick"})
        assert default.calls == []

    def test_recheck_after_late_registration(self):
        invoker = make_invoker(MockLLMProvider())
        invoker.registry.register(make_summarize(params=GenerationParams(model="fast")))
        with pytest.raises(CapabilityConfigError):
            invoker.check_model_aliases()


class TestInputValidation:
    """Tests for input checks before any model call."""

    async def test_invalid_input_does_not_call_model(self):
        provider = MockLLMProvider()
        invoker = make_invoker(provider, make_summarize(fallbacks=(CANNED,)))
        result = await invoker.invoke("summarize", {"notes": 5})
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.INVALID_INPUT
        assert "notes" in result.message
        assert provider.calls == []

    async def test_missing_required_input(self):
        invoker = make_invoker(MockLLMProvider(), make_summarize())
        result = await invoker.invoke("summarize", {})
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.INVALID_INPUT
        assert result.stage == "input"

    async def test_non_mapping_input(self):
        invoker = make_invoker(MockLLMProvider(), make_summarize())
        result = await invoker.invoke("summarize", "just text")
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.INVALID_INPUT

    async def test_input_defaults_are_applied_before_rendering(self):
        provider = MockLLMProvider(['{"summary": "x"}'])
        capability = make_summarize(
            input_schema=Schema.of(
                string("notes"), integer("count", required=False, default=5)
            ),
            template="{{ count }} points: {{ notes }}",
        )
        invoker = make_invoker(provider, capability)
        await invoker.invoke("summarize", {"notes": "n"})
        assert provider.prompts[0].startswith("5 points: n")

    async def test_unknown_capability_raises(self):
        invoker = make_invoker(MockLLMProvider(), make_summarize())
        with pytest.raises(CapabilityNotFoundError):
            await invoker.invoke("missing", {})


class TestPrimaryAttempt:
    """Tests for the primary path."""

    async def test_fenced_json_success(self):
        provider = MockLLMProvider(['```json\n{"summary":"x"}\n```'])
        invoker = make_invoker(provider, make_summarize())
        result = await invoker.invoke("summarize", {"notes": "long notes"})
        assert result == Success(value={"summary": "x"})

    async def test_prompt_carries_format_instructions(self):
        provider = MockLLMProvider(['{"summary": "x"}'])
        invoker = make_invoker(provider, make_summarize())
        await invoker.invoke("summarize", {"notes": "abc"})
        prompt = provider.prompts[0]
        assert prompt.startswith("Summarize:\nabc")
        assert "JSON Schema" in prompt
        assert '"required": ["summary"]' in prompt

    async def test_generation_params_are_sent(self):
        provider = MockLLMProvider(['{"summary": "x"}'])
        invoker = make_invoker(
            provider, make_summarize(params=GenerationParams(temperature=0.2, max_tokens=300))
        )
        await invoker.invoke("summarize", {"notes": "abc"})
        assert provider.calls[0]["temperature"] == 0.2
        assert provider.calls[0]["max_tokens"] == 300

    async def test_recovered_result_is_returned_not_hidden(self):
        capability = make_summarize(
            output_schema=Schema.of(string("summary"), list_of("points", string(), required=False))
        )
        invoker = make_invoker(MockLLMProvider(['{"summary": "x"}']), capability)
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert isinstance(result, Recovered)
        assert result.value == {"summary": "x", "points": []}

    async def test_failure_without_fallbacks_is_immediate(self):
        provider = MockLLMProvider(['{"summary":"x"'])
        invoker = make_invoker(provider, make_summarize())
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.UNPARSABLE_RESPONSE
        assert result.stage == "primary"
        assert result.attempts == ("primary",)
        assert len(provider.calls) == 1

    async def test_transport_failure_is_distinct(self):
        provider = MockLLMProvider([ConnectionError("connection reset")])
        invoker = make_invoker(provider, make_summarize())
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.TRANSPORT_ERROR

    async def test_timeout_feeds_the_fallback_chain(self):
        provider = MockLLMProvider(["late"], delay=1.0)
        capability = make_summarize(
            params=GenerationParams(timeout=0.01), fallbacks=(CANNED,)
        )
        invoker = make_invoker(provider, capability)
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert isinstance(result, Recovered)
        assert result.value == {"summary": "Summary unavailable."}


class TestFallbackChain:
    """Tests for ordered fallbacks."""

    async def test_truncated_json_then_simplified_retry(self):
        provider = MockLLMProvider(['{"summary":"x"', '{"summary": "short"}'])
        invoker = make_invoker(provider, make_summarize(fallbacks=(SIMPLE_RETRY, CANNED)))
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert result == Success(value={"summary": "short"})
        assert len(provider.calls) == 2
        assert provider.prompts[1].startswith("Summarize briefly: abc")

    async def test_fallbacks_run_in_declared_order(self):
        provider = MockLLMProvider(["nope", "still nope"])
        invoker = make_invoker(provider, make_summarize(fallbacks=(SIMPLE_RETRY, CANNED)))
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert isinstance(result, Recovered)
        assert result.value == {"summary": "Summary unavailable."}
        assert CANNED_NOTE in result.notes
        assert len(provider.calls) == 2

    async def test_canned_first_skips_model_retry(self):
        provider = MockLLMProvider(["nope"])
        invoker = make_invoker(provider, make_summarize(fallbacks=(CANNED, SIMPLE_RETRY)))
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert isinstance(result, Recovered)
        assert len(provider.calls) == 1

    async def test_exhausted_chain_reports_stage_and_attempts(self):
        provider = MockLLMProvider([ConnectionError("down"), ConnectionError("down")])
        invoker = make_invoker(provider, make_summarize(fallbacks=(SIMPLE_RETRY,)))
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.TRANSPORT_ERROR
        assert result.stage == "fallback[1]:simplified_retry"
        assert result.attempts == ("primary", "fallback[1]:simplified_retry")

    async def test_fallback_params_are_merged(self):
        provider = MockLLMProvider(["nope", '{"summary": "x"}'])
        capability = make_summarize(
            params=GenerationParams(temperature=0.7, max_tokens=500),
            fallbacks=(
                SimplifiedRetry(
                    template="{{ notes }}", params=GenerationParams(temperature=0.0)
                ),
            ),
        )
        invoker = make_invoker(provider, capability)
        await invoker.invoke("summarize", {"notes": "abc"})
        retry_call = provider.calls[1]
        assert retry_call["temperature"] == 0.0
        assert retry_call["max_tokens"] == 500

    async def test_text_mode_retry_wraps_plain_text(self):
        provider = MockLLMProvider(["not json at all", "  Plain answer.  "])
        capability = make_summarize(
            fallbacks=(SimplifiedRetry(template="{{ notes }}", output_mode=OutputMode.TEXT),),
            text_field="summary",
        )
        invoker = make_invoker(provider, capability)
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert result == Success(value={"summary": "Plain answer."})
        assert "JSON Schema" not in provider.prompts[1]

    async def test_empty_text_response_fails_over(self):
        provider = MockLLMProvider([""])
        capability = make_summarize(
            output_mode=OutputMode.TEXT, text_field="summary", fallbacks=(CANNED,)
        )
        invoker = make_invoker(provider, capability)
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert isinstance(result, Recovered)

    async def test_invalid_input_never_falls_back(self):
        provider = MockLLMProvider()
        invoker = make_invoker(provider, make_summarize(fallbacks=(CANNED,)))
        result = await invoker.invoke("summarize", {"notes": None})
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.INVALID_INPUT


class TestOutputDefaults:
    """Tests for static output defaults."""

    async def test_defaults_fill_absent_optional_fields(self):
        capability = make_summarize(
            output_schema=Schema.of(string("summary"), string("disclaimer", required=False)),
            output_defaults={"disclaimer": "Not medical advice."},
        )
        invoker = make_invoker(MockLLMProvider(['{"summary": "x"}']), capability)
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert isinstance(result, Recovered)
        assert result.value["disclaimer"] == "Not medical advice."

    async def test_defaults_do_not_override_model_values(self):
        capability = make_summarize(
            output_schema=Schema.of(string("summary"), string("disclaimer", required=False)),
            output_defaults={"disclaimer": "Not medical advice."},
        )
        invoker = make_invoker(
            MockLLMProvider(['{"summary": "x", "disclaimer": "Own text"}']), capability
        )
        result = await invoker.invoke("summarize", {"notes": "abc"})
        assert result == Success(value={"summary": "x", "disclaimer": "Own text"})


class TestCaching:
    """Tests for the invoker's use of the result cache."""

    async def test_success_is_cached_by_normalized_input(self):
        provider = MockLLMProvider(['{"summary": "x"}', '{"summary": "y"}'])
        capability = make_summarize(cache=CachePolicy(normalize=("notes",)))
        invoker = make_invoker(provider, capability, cache=ResultCache())

        first = await invoker.invoke("summarize", {"notes": "Heart  Failure"})
        second = await invoker.invoke("summarize", {"notes": " heart failure "})
        assert first == Success(value={"summary": "x"})
        assert second == Success(value={"summary": "x"}, cached=True)
        assert len(provider.calls) == 1

    async def test_mutating_a_result_does_not_change_the_cache(self):
        provider = MockLLMProvider(['{"summary": "x"}'])
        capability = make_summarize(cache=CachePolicy())
        invoker = make_invoker(provider, capability, cache=ResultCache())

        first = await invoker.invoke("summarize", {"notes": "abc"})
        first.value["summary"] = "changed"
        second = await invoker.invoke("summarize", {"notes": "abc"})
        second.value["summary"] = "changed again"
        third = await invoker.invoke("summarize", {"notes": "abc"})

        assert third == Success(value={"summary": "x"}, cached=True)
        assert len(provider.calls) == 1

    async def test_recovered_is_not_cached(self):
        provider = MockLLMProvider(["nope", "nope"])
        capability = make_summarize(cache=CachePolicy(), fallbacks=(CANNED,))
        invoker = make_invoker(provider, capability, cache=ResultCache())
        await invoker.invoke("summarize", {"notes": "abc"})
        await invoker.invoke("summarize", {"notes": "abc"})
        assert len(provider.calls) == 2

    async def test_uncached_capability_always_calls(self):
        provider = MockLLMProvider(['{"summary": "x"}', '{"summary": "x"}'])
        invoker = make_invoker(provider, make_summarize(), cache=ResultCache())
        await invoker.invoke("summarize", {"notes": "abc"})
        await invoker.invoke("summarize", {"notes": "abc"})
        assert len(provider.calls) == 2


class TestConcurrency:
    """Independent calls do not interfere."""

    async def test_concurrent_calls_are_independent(self):
        class EchoProvider(MockLLMProvider):
            async def generate(self, prompt, **kwargs):
                await asyncio.sleep(0.01)
                notes = prompt.split("\n")[1]
                self.responses.append(json.dumps({"summary": notes.upper()}))
                return await super().generate(prompt, **kwargs)

        provider = EchoProvider()
        invoker = make_invoker(provider, make_summarize())
        results = await asyncio.gather(
            *(invoker.invoke("summarize", {"notes": f"note {i}"}) for i in range(5))
        )
        assert [r.value["summary"] for r in results] == [f"NOTE {i}" for i in range(5)]
