"""
AI Client - Chat-completions client for reply generation and analysis.

This module talks to any OpenAI-compatible chat-completions endpoint
(OpenRouter by default). It knows nothing about prompts: callers hand it a
message list and get back cleaned text, or an LLMError.

Supported Models (via OpenRouter):
    - openai/gpt-4o-mini (cheap & fast, default)
    - openai/gpt-4o
    - google/gemini-2.0-flash-001
    - And many more at https://openrouter.ai/models

Configuration:
    AI_BASE_URL=https://openrouter.ai/api/v1
    AI_API_KEY=sk-or-v1-xxx
    AI_MODEL=openai/gpt-4o-mini
    AI_FALLBACK_MODELS=["google/gemini-2.0-flash-001"]

Usage:
    from src.ai_client import AIClient
    from config import settings

    client = AIClient.from_settings(settings)
    text = await client.complete(
        [{"role": "user", "content": "Say hi"}],
        max_tokens=150,
        temperature=0.7,
    )
"""

import logging

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """The model could not produce usable text (timeout, HTTP error, empty)."""


def _is_retryable_error(e: BaseException) -> bool:
    """Connection problems, timeouts and 429s are worth another try."""
    if isinstance(e, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(e, httpx.HTTPStatusError) and e.response.status_code == 429:
        return True
    return False


class AIClient:
    """
    OpenAI-compatible chat-completions client.

    Tries the primary model, then each fallback model in order. Each model
    gets a few tenacity retries for transient network errors.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        fallback_models: list[str] | None = None,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the AI client.

        Args:
            base_url: API endpoint URL (e.g., https://openrouter.ai/api/v1).
            api_key: Provider API key.
            model: Primary model identifier.
            fallback_models: Models to try when the primary fails.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.fallback_models = fallback_models or []
        self.timeout = timeout
        self._transport = transport

        logger.info(
            f"AI Client initialized: {self.base_url} / {model} "
            f"(Fallbacks: {len(self.fallback_models)})"
        )

    @classmethod
    def from_settings(cls, settings) -> "AIClient":
        return cls(
            base_url=settings.ai_base_url,
            api_key=settings.ai_api_key,
            model=settings.ai_model,
            fallback_models=settings.ai_fallback_models,
            timeout=settings.ai_timeout_seconds,
        )

    async def complete(
        self,
        messages: list[dict],
        max_tokens: int = 150,
        temperature: float = 0.7,
    ) -> str:
        """
        Run a chat completion through the model chain.

        Args:
            messages: Chat messages (role/content dicts).
            max_tokens: Maximum tokens in response.
            temperature: Sampling temperature.

        Returns:
            Cleaned, non-empty completion text.

        Raises:
            LLMError: If every model in the chain failed.
        """
        logger.debug(f"Completion request: {messages}")
        last_error: Exception | None = None

        for current_model in [self.model] + self.fallback_models:
            try:
                content = await self._generate_with_retry(
                    model=current_model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
                reply = self._clean_reply(content)
                if not reply:
                    raise LLMError(f"Model {current_model} returned empty content")
                return reply
            except (httpx.HTTPError, LLMError, KeyError, IndexError, TypeError, ValueError) as e:
                logger.warning(f"Model {current_model} failed: {e}")
                last_error = e

        raise LLMError(f"All models failed: {last_error}") from last_error

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_retryable_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _generate_with_retry(
        self,
        model: str,
        messages: list,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """
        Single chat-completions request, retried on transient errors.

        Raises:
            httpx.HTTPStatusError: On non-retryable HTTP errors.
            KeyError/IndexError/TypeError: On an unexpected response body.
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                url=f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": model,
                    "messages": messages,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                },
            )
            response.raise_for_status()
            data = response.json()

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error(f"Unexpected API response structure: {e}, raw: {data}")
            raise
        return (content or "").strip()

    def _clean_reply(self, reply: str) -> str:
        """
        Remove surrounding quotes and whitespace that models like to add.

        Does NOT truncate; length governance belongs to the caller.
        """
        reply = reply.strip()
        for quote in ('"', "'", "“", "‘"):
            closing = {"“": "”", "‘": "’"}.get(quote, quote)
            if len(reply) >= 2 and reply.startswith(quote) and reply.endswith(closing):
                reply = reply[1:-1].strip()
        return reply

    async def health_check(self) -> bool:
        """
        Check if the AI service is available.

        Returns:
            True if service is responding, False otherwise.
        """
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                response = await client.get(
                    url=f"{self.base_url}/models",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"AI health check failed: {e}")
            return False
