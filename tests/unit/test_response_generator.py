"""
Tests for the response generator.

Test cases:
- LLM reply accepted as-is when short and new
- Length governance (pricing → short DM reply, otherwise first 6 words)
- Anti-repetition ("Nice" twice is never sent twice)
- Deterministic fallback by language and intent on LLM failure
- Open circuit skips the LLM entirely
- Prompt carries history, live context, personality, no-repeat-greeting
- Template selection avoids recently sent strings

Mocks: LLM endpoint (httpx.MockTransport)
Real: ResponseGenerator, ConversationMemory over in-memory SQLite
"""

import random

import pytest

from config.prompts import FALLBACK_REPLIES, NO_REPEAT_GREETING, SHORT_PRICING_REPLIES
from src.circuit_breaker import CircuitBreaker
from src.memory import ConversationMemory
from src.response_generator import ResponseGenerator
from src.runtime_state import ReplyHistory


@pytest.fixture
def history():
    return ReplyHistory(size=100)


@pytest.fixture
def memory(sqlite_store, neutral_analyzer):
    return ConversationMemory(sqlite_store, neutral_analyzer)


def make_generator(ai_client, history, memory=None, breaker=None):
    return ResponseGenerator(
        ai_client,
        memory,
        history,
        breaker=breaker or CircuitBreaker("test-llm"),
        rng=random.Random(3),
    )


@pytest.mark.asyncio
class TestLLMPath:

    async def test_short_reply_used(self, ai_client_factory, history):
        ai = ai_client_factory(["love this 🙌"])
        generator = make_generator(ai, history)

        reply = await generator.generate(None, "great post")

        assert reply.text == "love this 🙌"
        assert reply.source == "llm"
        assert reply.confidence == 0.9
        assert reply.language == "english"
        assert "love this 🙌" in history

    async def test_request_parameters(self, ai_client_factory, history):
        ai = ai_client_factory(["ok!"])
        generator = make_generator(ai, history)

        await generator.generate(None, "great post")

        body = ai.transport.requests[0]
        assert body["temperature"] == 0.7
        assert body["max_tokens"] == 150
        assert body["messages"][-1] == {"role": "user", "content": "great post"}

    async def test_long_reply_truncated_to_six_words(self, ai_client_factory, history):
        ai = ai_client_factory(["Thank you so much for your kind words about our products"])
        generator = make_generator(ai, history)

        reply = await generator.generate(None, "great post")

        assert reply.text == "Thank you so much for your"
        assert len(reply.text) <= 50

    async def test_long_pricing_reply_collapses(self, ai_client_factory, history):
        ai = ai_client_factory(["The price for this item is 2999 rupees, DM me for more info"])
        generator = make_generator(ai, history)

        reply = await generator.generate(None, "what's the price?")

        assert reply.text == SHORT_PRICING_REPLIES["english"]

    async def test_long_reply_to_hinglish_pricing_question(self, ai_client_factory, history):
        ai = ai_client_factory(["Is product ki price 2999 hai, DM mein more details share karenge"])
        generator = make_generator(ai, history)

        reply = await generator.generate(None, "price kya hai?")

        assert reply.text == SHORT_PRICING_REPLIES["hinglish"]

    async def test_surrounding_quotes_stripped(self, ai_client_factory, history):
        ai = ai_client_factory(['"so glad you like it"'])
        generator = make_generator(ai, history)

        reply = await generator.generate(None, "great post")

        assert reply.text == "so glad you like it"


@pytest.mark.asyncio
class TestAntiRepetition:

    async def test_same_reply_never_sent_twice(self, ai_client_factory, history):
        ai = ai_client_factory(["Nice"])
        generator = make_generator(ai, history)

        first = await generator.generate(None, "great post")
        second = await generator.generate(None, "great post")

        assert first.text == "Nice"
        assert second.text != "Nice"
        assert second.source == "fallback"
        assert second.text in FALLBACK_REPLIES["english"]["appreciation"]

    async def test_history_is_bounded(self, ai_client_factory):
        history = ReplyHistory(size=2)
        generator = make_generator(None, history)

        for _ in range(3):
            await generator.generate(None, "great post")

        assert len(history) == 2


@pytest.mark.asyncio
class TestFallback:

    async def test_llm_error_uses_language_and_intent(self, ai_client_factory, history):
        ai = ai_client_factory([500])
        generator = make_generator(ai, history)

        reply = await generator.generate(None, "kaise ho")

        assert reply.source == "fallback"
        assert reply.confidence == 0.6
        assert reply.language == "hinglish"
        assert reply.intent == "question"
        assert reply.text == "main badhiya, aap batao? 🙂"

    async def test_empty_llm_reply_falls_back(self, ai_client_factory, history):
        ai = ai_client_factory(["   "])
        generator = make_generator(ai, history)

        reply = await generator.generate(None, "धन्यवाद")

        assert reply.source == "fallback"
        assert reply.text == FALLBACK_REPLIES["hindi"]["thanks"][0]

    async def test_pool_rotates_then_reuses_least_recent(self, history):
        generator = make_generator(None, history)
        pool = FALLBACK_REPLIES["english"]["location"]

        texts = [(await generator.generate(None, "where is the store")).text for _ in range(4)]

        assert texts[:3] == pool
        assert texts[3] == pool[0]

    async def test_open_circuit_skips_llm(self, ai_client_factory, history):
        ai = ai_client_factory([500])
        breaker = CircuitBreaker("test-llm", failure_threshold=1, recovery_timeout=60)
        generator = make_generator(ai, history, breaker=breaker)

        await generator.generate(None, "great post")
        reply = await generator.generate(None, "thanks!")

        assert len(ai.transport.requests) == 1
        assert reply.source == "fallback"
        assert reply.intent == "thanks"


@pytest.mark.asyncio
class TestPrompt:

    async def test_history_context_and_greeting_rule(self, ai_client_factory, history, memory):
        conversation = await memory.get_or_create_conversation("ws", "instagram", "user-1", "someone")
        cid = conversation["id"]
        await memory.store_message(cid, "m-1", "user", "hello")
        await memory.store_message(cid, None, "ai", "Hi! how can I help")
        await memory.store_message(cid, "m-2", "user", "do you ship to Pune?")

        ai = ai_client_factory(["yes we do 🚚"])
        generator = make_generator(ai, history, memory=memory)

        await generator.generate(cid, "do you ship to Pune?", "casual")

        messages = ai.transport.requests[0]["messages"]
        system = messages[0]["content"]
        assert "Customer: hello" in system
        assert "You: Hi! how can I help" in system
        assert "Customer: do you ship to Pune?" not in system
        assert "intent: question" in system
        assert "casual, relaxed, and conversational" in system
        assert {"role": "system", "content": NO_REPEAT_GREETING} in messages

    async def test_no_greeting_rule_when_user_greets(self, ai_client_factory, history, memory):
        conversation = await memory.get_or_create_conversation("ws", "instagram", "user-1")
        cid = conversation["id"]
        await memory.store_message(cid, None, "ai", "Hello! welcome")

        ai = ai_client_factory(["hey again"])
        generator = make_generator(ai, history, memory=memory)

        await generator.generate(cid, "hi again")

        messages = ai.transport.requests[0]["messages"]
        assert {"role": "system", "content": NO_REPEAT_GREETING} not in messages

    async def test_history_limited_to_six(self, ai_client_factory, history, memory):
        conversation = await memory.get_or_create_conversation("ws", "instagram", "user-1")
        cid = conversation["id"]
        for i in range(10):
            await memory.store_message(cid, f"m-{i}", "user", f"message number {i}")

        ai = ai_client_factory(["ok"])
        generator = make_generator(ai, history, memory=memory)

        await generator.generate(cid, "latest one")

        system = ai.transport.requests[0]["messages"][0]["content"]
        assert "message number 3" not in system
        assert "message number 4" in system
        assert "message number 9" in system

    async def test_stored_inbound_does_not_shrink_history(self, ai_client_factory, history, memory):
        conversation = await memory.get_or_create_conversation("ws", "instagram", "user-1")
        cid = conversation["id"]
        for i in range(9):
            await memory.store_message(cid, f"m-{i}", "user", f"message number {i}")
        await memory.store_message(cid, "m-latest", "user", "latest one")

        ai = ai_client_factory(["ok"])
        generator = make_generator(ai, history, memory=memory)

        await generator.generate(cid, "latest one")

        system = ai.transport.requests[0]["messages"][0]["content"]
        assert "message number 2" not in system
        assert all(f"message number {i}" in system for i in range(3, 9))
        assert "Customer: latest one" not in system

    async def test_default_personality(self, ai_client_factory, history):
        ai = ai_client_factory(["ok"])
        generator = make_generator(ai, history)

        await generator.generate(None, "hello")

        assert "Professional and friendly" in ai.transport.requests[0]["messages"][0]["content"]


class TestTemplates:

    def test_template_avoids_recent(self, history):
        generator = make_generator(None, history)
        templates = ["thanks for asking!", "check your DMs 📩"]

        first = generator.from_templates(templates, "price?")
        second = generator.from_templates(templates, "price?")
        third = generator.from_templates(templates, "price?")

        assert {first.text, second.text} == set(templates)
        assert third.text == first.text
        assert first.source == "template"
        assert first.confidence == 0.8

    def test_no_templates_falls_back(self, history):
        generator = make_generator(None, history)
        reply = generator.from_templates([], "where is the store")
        assert reply.source == "fallback"
        assert reply.intent == "location"
