"""
Completion Service Client

Provides one call shape, complete(model, messages, json_only), over the
OpenAI, Anthropic and Gemini SDKs. The provider is picked from the model name.
Every call is bounded by a timeout; provider failures surface as
ExternalServiceError with the calling stage attached.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from swingsetups.core.config import settings
from swingsetups.schemas.stages import TokenUsage
from swingsetups.services.base import ExternalServiceError

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GEMINI = "gemini"


def provider_for_model(model: str) -> LLMProvider:
    name = model.lower()
    if name.startswith("claude"):
        return LLMProvider.ANTHROPIC
    if name.startswith("gemini"):
        return LLMProvider.GEMINI
    return LLMProvider.OPENAI


@dataclass
class Completion:
    """Response from the completion service."""

    content: str
    model: str
    provider: LLMProvider
    token_usage: TokenUsage
    latency_ms: int = 0


class BaseLLMClient(ABC):
    """Abstract base class for provider clients."""

    provider: LLMProvider

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: list[dict],
        json_only: bool = True,
        max_tokens: int = 4096,
    ) -> Completion:
        """Run one chat completion."""
        pass


class OpenAIClient(BaseLLMClient):
    """OpenAI chat completions (JSON mode when json_only)."""

    provider = LLMProvider.OPENAI

    def __init__(self, api_key: Optional[str]):
        self._api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            import openai

            self._client = openai.AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def complete(self, model, messages, json_only=True, max_tokens=4096) -> Completion:
        client = self._get_client()
        kwargs = {"model": model, "messages": messages}
        # o-series and gpt-5 models only accept max_completion_tokens
        kwargs["max_completion_tokens"] = max_tokens
        if json_only:
            kwargs["response_format"] = {"type": "json_object"}

        response = await client.chat.completions.create(**kwargs)
        usage = response.usage
        cached = 0
        details = getattr(usage, "prompt_tokens_details", None) if usage else None
        if details is not None:
            cached = getattr(details, "cached_tokens", 0) or 0

        return Completion(
            content=response.choices[0].message.content or "",
            model=model,
            provider=self.provider,
            token_usage=TokenUsage(
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
                cached_tokens=cached,
            ),
        )


class AnthropicClient(BaseLLMClient):
    """Anthropic messages API. System messages are lifted into `system`."""

    provider = LLMProvider.ANTHROPIC

    def __init__(self, api_key: Optional[str]):
        self._api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            import anthropic

            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def complete(self, model, messages, json_only=True, max_tokens=4096) -> Completion:
        client = self._get_client()
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        if json_only:
            system = f"{system}\n\nRespond with a single JSON object and nothing else.".strip()
        chat = [m for m in messages if m["role"] != "system"]

        response = await client.messages.create(
            model=model,
            max_tokens=max_tokens,
            system=system,
            messages=chat,
        )
        usage = response.usage
        return Completion(
            content="".join(block.text for block in response.content if hasattr(block, "text")),
            model=model,
            provider=self.provider,
            token_usage=TokenUsage(
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cached_tokens=getattr(usage, "cache_read_input_tokens", 0) or 0,
            ),
        )


class GeminiClient(BaseLLMClient):
    """Google Gemini. The SDK call is synchronous, so it runs in an executor."""

    provider = LLMProvider.GEMINI

    def __init__(self, api_key: Optional[str]):
        self._api_key = api_key

    async def complete(self, model, messages, json_only=True, max_tokens=4096) -> Completion:
        import google.generativeai as genai

        genai.configure(api_key=self._api_key)
        gen_model = genai.GenerativeModel(model)

        # Gemini takes a single prompt
        prompt = "\n\n---\n\n".join(m["content"] for m in messages)
        generation_config = {"max_output_tokens": max_tokens}
        if json_only:
            generation_config["response_mime_type"] = "application/json"

        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: gen_model.generate_content(prompt, generation_config=generation_config),
        )
        meta = getattr(response, "usage_metadata", None)
        return Completion(
            content=response.text,
            model=model,
            provider=self.provider,
            token_usage=TokenUsage(
                input_tokens=getattr(meta, "prompt_token_count", 0) or 0,
                output_tokens=getattr(meta, "candidates_token_count", 0) or 0,
                cached_tokens=getattr(meta, "cached_content_token_count", 0) or 0,
            ),
        )


class CompletionClient:
    """
    Routes completion calls to the right provider and enforces the timeout.

    Stateless per call: the model comes in as an argument, so concurrent
    pipelines with different plans never interfere.
    """

    def __init__(
        self,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        gemini_api_key: Optional[str] = None,
        timeout_seconds: float = 90.0,
    ):
        self.timeout_seconds = timeout_seconds
        self._clients: dict[LLMProvider, BaseLLMClient] = {}
        if openai_api_key:
            self._clients[LLMProvider.OPENAI] = OpenAIClient(openai_api_key)
        if anthropic_api_key:
            self._clients[LLMProvider.ANTHROPIC] = AnthropicClient(anthropic_api_key)
        if gemini_api_key:
            self._clients[LLMProvider.GEMINI] = GeminiClient(gemini_api_key)

        if not self._clients:
            logger.warning("No LLM API keys configured. Analysis requests will fail.")

    async def complete(
        self,
        model: str,
        messages: list[dict],
        json_only: bool = True,
        *,
        stage: str = "completion",
        timeout: Optional[float] = None,
        max_tokens: int = 4096,
    ) -> Completion:
        provider = provider_for_model(model)
        client = self._clients.get(provider)
        if client is None:
            raise ExternalServiceError(
                "completion", f"No {provider.value} client configured for model {model}", stage=stage
            )

        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                client.complete(model, messages, json_only=json_only, max_tokens=max_tokens),
                timeout=timeout or self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"[{stage}] {model} timed out after {timeout or self.timeout_seconds}s")
            raise ExternalServiceError(
                "completion", f"{model} timed out", stage=stage
            )
        except ExternalServiceError:
            raise
        except Exception as e:
            logger.error(f"[{stage}] {provider.value} API error: {e}")
            raise ExternalServiceError(
                "completion", f"{provider.value} call failed: {e}", stage=stage
            ) from e

        result.latency_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            f"[{stage}] {model} ok in {result.latency_ms}ms "
            f"(in={result.token_usage.input_tokens}, out={result.token_usage.output_tokens}, "
            f"cached={result.token_usage.cached_tokens})"
        )
        return result

    async def health_check(self) -> bool:
        return bool(self._clients)


# Singleton instance management
_completion_client: Optional[CompletionClient] = None


def get_completion_client() -> CompletionClient:
    """Get or create completion client singleton."""
    global _completion_client
    if _completion_client is None:
        _completion_client = CompletionClient(
            openai_api_key=settings.openai_api_key,
            anthropic_api_key=settings.anthropic_api_key,
            gemini_api_key=settings.gemini_api_key,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    return _completion_client
