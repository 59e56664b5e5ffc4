"""
Real Functionality Tests - AI Client.

Tests actual AI client behavior against a mock chat-completions endpoint:
- Successful completion flow and request shape
- Fallback to the next model on a non-retryable error
- Malformed and empty responses move down the model chain
- LLMError once every model has failed
- Retry on 429
- Reply text cleaning
- Health check

Mocks: chat-completions endpoint (httpx.MockTransport)
Real: Model chain, tenacity retry policy, reply cleaning
"""

import httpx
import pytest

from src.ai_client import AIClient, LLMError, _is_retryable_error


def client_with(handler, fallback_models=None):
    return AIClient(
        base_url="https://llm.test/v1/",
        api_key="test-api-key",
        model="test-model",
        fallback_models=fallback_models,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.real
@pytest.mark.asyncio
class TestAIClientReal:
    """Real functionality tests for the AI client module."""

    async def test_successful_completion(self, ai_client_factory):
        ai = ai_client_factory(["hello there"])

        result = await ai.complete([{"role": "user", "content": "hi"}], max_tokens=100, temperature=0.3)

        assert result == "hello there"
        body = ai.transport.requests[0]
        assert body["model"] == "test-model"
        assert body["max_tokens"] == 100
        assert body["temperature"] == 0.3

    async def test_request_headers_and_url(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        await client_with(handler).complete([{"role": "user", "content": "hi"}])

        assert str(seen[0].url) == "https://llm.test/v1/chat/completions"
        assert seen[0].headers["Authorization"] == "Bearer test-api-key"

    async def test_fallback_model_after_server_error(self, ai_client_factory):
        ai = ai_client_factory([500, "from the backup"], fallback_models=["backup-model"])

        result = await ai.complete([{"role": "user", "content": "hi"}])

        assert result == "from the backup"
        # 500 is not retried, so exactly one request per model
        assert [r["model"] for r in ai.transport.requests] == ["test-model", "backup-model"]

    async def test_empty_content_tries_next_model(self, ai_client_factory):
        ai = ai_client_factory(["   ", "second try"], fallback_models=["backup-model"])

        assert await ai.complete([{"role": "user", "content": "hi"}]) == "second try"

    async def test_malformed_body_tries_next_model(self):
        bodies = [{"choices": []}, {"choices": [{"message": {"content": "fine"}}]}]

        def handler(request):
            return httpx.Response(200, json=bodies.pop(0))

        client = client_with(handler, fallback_models=["backup-model"])

        assert await client.complete([{"role": "user", "content": "hi"}]) == "fine"

    async def test_all_models_fail(self, ai_client_factory):
        ai = ai_client_factory([400], fallback_models=["backup-model", "last-model"])

        with pytest.raises(LLMError, match="All models failed"):
            await ai.complete([{"role": "user", "content": "hi"}])

        assert len(ai.transport.requests) == 3

    @pytest.mark.slow
    async def test_rate_limit_is_retried(self, ai_client_factory):
        ai = ai_client_factory([429, "after waiting"])

        result = await ai.complete([{"role": "user", "content": "hi"}])

        assert result == "after waiting"
        assert [r["model"] for r in ai.transport.requests] == ["test-model", "test-model"]

    @pytest.mark.parametrize("raw,expected", [
        ('"quoted reply"', "quoted reply"),
        ("'single quoted'", "single quoted"),
        ("“curly”", "curly"),
        ("  padded  ", "padded"),
        ('say "this" please', 'say "this" please'),
    ])
    async def test_reply_cleaning(self, ai_client_factory, raw, expected):
        ai = ai_client_factory([raw])
        assert await ai.complete([{"role": "user", "content": "hi"}]) == expected

    async def test_health_check(self):
        def handler(request):
            assert request.url.path == "/v1/models"
            return httpx.Response(200, json={"data": []})

        assert await client_with(handler).health_check() is True

    async def test_health_check_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        assert await client_with(handler).health_check() is False


class TestRetryPolicy:

    def test_retryable_errors(self):
        request = httpx.Request("POST", "https://llm.test/v1/chat/completions")

        assert _is_retryable_error(httpx.ConnectError("refused"))
        assert _is_retryable_error(httpx.ReadTimeout("slow"))
        assert _is_retryable_error(
            httpx.HTTPStatusError("429", request=request, response=httpx.Response(429, request=request))
        )
        assert not _is_retryable_error(
            httpx.HTTPStatusError("500", request=request, response=httpx.Response(500, request=request))
        )
        assert not _is_retryable_error(ValueError("bad json"))
