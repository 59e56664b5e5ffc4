"""
Pytest fixtures and configuration.

This module provides shared fixtures for all tests:
- Test settings built without reading .env
- Real SQLite store (in-memory) and conversation memory
- Mock HTTP transports for the LLM and the Graph API
- Webhook payload builders
- Deterministic randomness, time control and a no-wait sleep

Usage:
    def test_something(test_settings, sqlite_store):
        # fixtures are automatically injected
        pass
"""

import json
import random
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from freezegun import freeze_time

from config.settings import Settings
from src.ai_client import AIClient
from src.database_sqlite import SQLiteDatabase
from src.platform_client import PlatformClient


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "real: mark test as a real functionality test (not mock-based)"
    )
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring multiple components"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (>1s execution time)"
    )


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """
    Settings for tests.

    The governor is opened up (always sample, no gap, no short-message skip,
    no naturalization) so flows are deterministic; individual tests tighten
    what they exercise.
    """
    return Settings(
        _env_file=None,
        environment="development",
        app_secret="test-app-secret",
        webhook_verify_token="test-verify-token",
        ai_api_key="",
        ai_base_url="https://llm.test/v1",
        ai_model="test-model",
        graph_api_base_url="https://graph.test/v22.0",
        supabase_url="",
        supabase_key="",
        sqlite_path=":memory:",
        response_sampling_rate=1.0,
        min_response_gap_seconds=0,
        short_message_skip_chance=0.0,
        naturalize_enabled=False,
    )


# =============================================================================
# Randomness, Time & Sleep
# =============================================================================

@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def frozen_time():
    """Freeze time on a Tuesday afternoon (UTC)."""
    with freeze_time("2025-11-25 14:30:00"):
        yield datetime(2025, 11, 25, 14, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def recorded_sleep():
    """
    Awaitable sleep that returns immediately and remembers what was asked.

    Usage:
        publisher = AdaptivePublisher(client, sleep=recorded_sleep)
        ...
        assert recorded_sleep.calls == [2.0, 5.0]
    """
    class RecordedSleep:
        def __init__(self):
            self.calls: list[float] = []

        async def __call__(self, seconds: float) -> None:
            self.calls.append(seconds)

    return RecordedSleep()


class ManualClock:
    """Mutable clock for components that take `clock=`."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock(datetime(2025, 11, 25, 14, 30, 0, tzinfo=timezone.utc))


# =============================================================================
# Store Fixtures
# =============================================================================

@pytest.fixture
def sqlite_store():
    """Fresh in-memory SQLite store for each test."""
    store = SQLiteDatabase(":memory:")
    yield store
    store.close()


@pytest.fixture
def neutral_analyzer():
    """Analyzer stand-in that never calls an LLM."""
    from src.message_analyzer import MessageAnalyzer
    return MessageAnalyzer(ai_client=None)


# =============================================================================
# HTTP Transport Fixtures
# =============================================================================

def chat_completion(content: str) -> dict:
    """Minimal OpenAI-compatible chat completion body."""
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def llm_transport():
    """
    Factory for a mock LLM endpoint.

    Usage:
        transport = llm_transport(["first reply", "second reply"])
        client = AIClient(..., transport=transport)
        transport.requests  # decoded JSON bodies, in order

    Replies are served in order; the last one repeats. A reply that is an
    int is returned as that HTTP status with an error body.
    """
    def factory(replies):
        requests: list[dict] = []
        queue = list(replies)

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            reply = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(reply, int):
                return httpx.Response(reply, json={"error": {"message": "upstream error"}})
            return httpx.Response(200, json=chat_completion(reply))

        transport = httpx.MockTransport(handler)
        transport.requests = requests
        return transport

    return factory


@pytest.fixture
def ai_client_factory(llm_transport):
    """Build an AIClient backed by a mock transport."""
    def factory(replies, fallback_models=None):
        transport = llm_transport(replies)
        client = AIClient(
            base_url="https://llm.test/v1",
            api_key="test-key",
            model="test-model",
            fallback_models=fallback_models or [],
            timeout=5.0,
            transport=transport,
        )
        client.transport = transport
        return client

    return factory


@pytest.fixture
def graph_transport():
    """
    Factory for a mock Graph API.

    Usage:
        transport = graph_transport({"replies": [error_response, ok_response]})

    `routes` maps a path suffix (e.g. "replies", "messages", "media",
    "media_publish") to a list of httpx.Response objects served in order
    (the last one repeats). Unrouted paths answer {"id": "graph-id"}.
    Every request is recorded on transport.requests.
    """
    def factory(routes: dict | None = None):
        routes = {k: list(v) for k, v in (routes or {}).items()}
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            suffix = request.url.path.rstrip("/").rsplit("/", 1)[-1]
            queue = routes.get(suffix)
            if queue:
                template = queue.pop(0) if len(queue) > 1 else queue[0]
                return httpx.Response(
                    template.status_code, headers=template.headers, content=template.content
                )
            return httpx.Response(200, json={"id": f"{suffix}-graph-id"})

        transport = httpx.MockTransport(handler)
        transport.requests = requests
        return transport

    return factory


@pytest.fixture
def platform_client_factory(graph_transport, recorded_sleep):
    def factory(routes: dict | None = None) -> PlatformClient:
        transport = graph_transport(routes)
        client = PlatformClient(
            base_url="https://graph.test/v22.0",
            timeout=5.0,
            transport=transport,
            sleep=recorded_sleep,
        )
        client.transport = transport
        return client

    return factory


def graph_error(message: str, code: int | None = None, subcode: int | None = None, status: int = 400) -> httpx.Response:
    error = {"message": message, "type": "OAuthException"}
    if code is not None:
        error["code"] = code
    if subcode is not None:
        error["error_subcode"] = subcode
    return httpx.Response(status, json={"error": error})


# =============================================================================
# Mock Client Fixtures
# =============================================================================

@pytest.fixture
def mock_ai_client():
    """AsyncMock AI client for tests that do not care about HTTP."""
    client = AsyncMock()
    client.complete.return_value = "love this 🙌"
    client.health_check.return_value = True
    return client


# =============================================================================
# Payload Fixtures
# =============================================================================

ACCOUNT_ID = "17841400000000001"
WORKSPACE_ID = "ws-test"


@pytest.fixture
def comment_payload():
    """Build a comments webhook body."""
    def factory(
        text: str,
        comment_id: str = "c-1",
        sender_id: str = "user-1",
        username: str = "customer_one",
        field: str = "comments",
        timestamp: int = 1764081000,  # 2025-11-25 14:30 UTC, a Tuesday
    ) -> dict:
        return {
            "object": "instagram",
            "entry": [{
                "id": ACCOUNT_ID,
                "time": timestamp,
                "changes": [{
                    "field": field,
                    "value": {
                        "id": comment_id,
                        "text": text,
                        "from": {"id": sender_id, "username": username},
                        "media": {"id": "media-1"},
                    },
                }],
            }],
        }

    return factory


@pytest.fixture
def dm_payload():
    """Build a messaging webhook body."""
    def factory(
        text: str,
        mid: str = "m-1",
        sender_id: str = "user-2",
        is_echo: bool = False,
        timestamp: int = 1764081000000,
    ) -> dict:
        message = {"mid": mid, "text": text}
        if is_echo:
            message["is_echo"] = True
        return {
            "object": "instagram",
            "entry": [{
                "id": ACCOUNT_ID,
                "time": timestamp,
                "messaging": [{
                    "sender": {"id": sender_id},
                    "recipient": {"id": ACCOUNT_ID},
                    "timestamp": timestamp,
                    "message": message,
                }],
            }],
        }

    return factory


@pytest_asyncio.fixture
async def seeded_store(sqlite_store):
    """SQLite store with one connected account and no rules."""
    await sqlite_store.upsert_social_account(
        account_id=ACCOUNT_ID,
        workspace_id=WORKSPACE_ID,
        username="the_shop",
        access_token="page-token",
    )
    return sqlite_store
