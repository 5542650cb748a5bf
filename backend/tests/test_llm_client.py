"""Tests for completion routing, timeouts and token accounting."""

import asyncio
from types import SimpleNamespace

import pytest

from swingsetups.core.config import settings
from swingsetups.schemas.analysis import AnalysisStatus, NotificationPolicy, RequestOptions
from swingsetups.schemas.market import AnalysisType
from swingsetups.schemas.stages import TokenUsage
from swingsetups.services.base import ExternalServiceError
from swingsetups.services.llm.client import (
    AnthropicClient,
    BaseLLMClient,
    Completion,
    CompletionClient,
    LLMProvider,
    OpenAIClient,
    provider_for_model,
)

MESSAGES = [{"role": "system", "content": "Return JSON."}, {"role": "user", "content": "{}"}]


class StubProvider(BaseLLMClient):
    """Provider client that answers after an optional delay, or raises."""

    def __init__(self, provider: LLMProvider, delay: float = 0.0, error: Exception = None):
        self.provider = provider
        self.delay = delay
        self.error = error
        self.models: list[str] = []

    async def complete(self, model, messages, json_only=True, max_tokens=4096) -> Completion:
        self.models.append(model)
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return Completion(
            content='{"ok": true}',
            model=model,
            provider=self.provider,
            token_usage=TokenUsage(input_tokens=10, output_tokens=5, cached_tokens=2),
        )


def client_with(*stubs: StubProvider) -> CompletionClient:
    client = CompletionClient(timeout_seconds=5.0)
    for stub in stubs:
        client._clients[stub.provider] = stub
    return client


class TestRouting:
    def test_provider_for_model(self):
        assert provider_for_model("gpt-5") == LLMProvider.OPENAI
        assert provider_for_model("o4-mini") == LLMProvider.OPENAI
        assert provider_for_model("claude-3-5-haiku") == LLMProvider.ANTHROPIC
        assert provider_for_model("Gemini-1.5-pro") == LLMProvider.GEMINI

    async def test_routes_by_model_name(self):
        openai_stub = StubProvider(LLMProvider.OPENAI)
        anthropic_stub = StubProvider(LLMProvider.ANTHROPIC)
        client = client_with(openai_stub, anthropic_stub)

        await client.complete("o4-mini", MESSAGES, stage="skeleton")
        result = await client.complete("claude-3-5-haiku", MESSAGES, stage="finalize")

        assert openai_stub.models == ["o4-mini"]
        assert anthropic_stub.models == ["claude-3-5-haiku"]
        assert result.provider == LLMProvider.ANTHROPIC
        assert result.latency_ms >= 0

    async def test_missing_provider_client(self):
        client = client_with(StubProvider(LLMProvider.OPENAI))

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.complete("claude-3-5-haiku", MESSAGES, stage="preflight")

        assert "No anthropic client configured" in exc_info.value.message
        assert exc_info.value.stage == "preflight"

    async def test_no_keys_fails_health_check(self):
        assert await CompletionClient().health_check() is False


class TestFailures:
    """Every provider failure surfaces as ExternalServiceError tagged with the stage."""

    async def test_timeout_becomes_external_service_error(self):
        client = client_with(StubProvider(LLMProvider.OPENAI, delay=1.0))

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.complete("o4-mini", MESSAGES, stage="skeleton", timeout=0.05)

        assert "timed out" in exc_info.value.message
        assert exc_info.value.stage == "skeleton"

    async def test_default_timeout_applies(self):
        client = client_with(StubProvider(LLMProvider.OPENAI, delay=1.0))
        client.timeout_seconds = 0.05

        with pytest.raises(ExternalServiceError):
            await client.complete("o4-mini", MESSAGES, stage="finalize")

    async def test_sdk_error_is_wrapped(self):
        client = client_with(StubProvider(LLMProvider.OPENAI, error=RuntimeError("rate limited")))

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.complete("o4-mini", MESSAGES, stage="finalize")

        assert "rate limited" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestTokenExtraction:
    async def test_openai_usage_with_cached_tokens(self):
        async def create(**kwargs):
            assert kwargs["response_format"] == {"type": "json_object"}
            assert kwargs["max_completion_tokens"] == 300
            return SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content='{"a": 1}'))],
                usage=SimpleNamespace(
                    prompt_tokens=1200,
                    completion_tokens=150,
                    prompt_tokens_details=SimpleNamespace(cached_tokens=1024),
                ),
            )

        provider = OpenAIClient("sk-test")
        provider._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

        result = await provider.complete("o4-mini", MESSAGES, max_tokens=300)

        assert result.content == '{"a": 1}'
        assert result.token_usage.input_tokens == 1200
        assert result.token_usage.output_tokens == 150
        assert result.token_usage.cached_tokens == 1024

    async def test_anthropic_lifts_system_prompt(self):
        seen = {}

        async def create(**kwargs):
            seen.update(kwargs)
            return SimpleNamespace(
                content=[SimpleNamespace(text='{"b": 2}')],
                usage=SimpleNamespace(input_tokens=800, output_tokens=90, cache_read_input_tokens=None),
            )

        provider = AnthropicClient("sk-ant-test")
        provider._client = SimpleNamespace(messages=SimpleNamespace(create=create))

        result = await provider.complete("claude-3-5-haiku", MESSAGES)

        assert seen["system"].startswith("Return JSON.")
        assert all(m["role"] != "system" for m in seen["messages"])
        assert result.content == '{"b": 2}'
        assert result.token_usage.cached_tokens == 0


class TestStageTimeoutFailsRecord:
    """A stalled completion call ends the record as failed instead of leaving it in progress."""

    async def test_stalled_stage_fails_record(self, make_orchestrator, monkeypatch):
        monkeypatch.setattr(settings, "llm_timeout_seconds", 0.05)
        monkeypatch.setattr(settings, "news_timeout_seconds", 0.05)
        client = client_with(StubProvider(LLMProvider.OPENAI, delay=1.0))
        orchestrator = make_orchestrator(client=client)

        response = await orchestrator.request_analysis(
            instrument_key="NSE_EQ|INE002A01018",
            stock_name="Reliance Industries",
            stock_symbol="RELIANCE",
            analysis_type=AnalysisType.SWING,
            user_id="u1",
            options=RequestOptions(notification=NotificationPolicy.silent()),
        )

        assert not response.success
        assert response.errorCode == "external_service_error"
        assert "timed out" in response.error
        assert response.data.status == AnalysisStatus.FAILED

        live = await orchestrator.get_analysis_status("NSE_EQ|INE002A01018", AnalysisType.SWING)
        assert live.status == AnalysisStatus.FAILED
