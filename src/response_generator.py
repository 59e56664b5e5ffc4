"""
Response Generator - Contextual replies with a deterministic safety net.

Generation Pipeline:
    ┌─────────────────────────────────────────────────────────────┐
    │  1. Build prompt   last 6 messages, live context,           │
    │                    personality, "don't greet twice"         │
    │  2. LLM call       temperature 0.7, <=150 tokens            │
    │  3. Length         >50 chars: pricing → "DM me", else       │
    │                    first 6 words                            │
    │  4. Repetition     sent recently? → deterministic fallback  │
    │  5. Record         remember the final text                  │
    └─────────────────────────────────────────────────────────────┘

When the LLM fails (timeout, HTTP error, empty text, open circuit) the
generator skips straight to the fallback: a canned reply chosen by detected
language (english / hindi / hinglish) and intent (pricing, location, thanks,
appreciation, question, generic).

Confidence is only logged. Nothing downstream branches on it.
"""

import logging
import random
from dataclasses import dataclass

from config.prompts import (
    DEFAULT_PERSONALITY,
    FALLBACK_REPLIES,
    NO_REPEAT_GREETING,
    PERSONALITIES,
    SHORT_PRICING_REPLIES,
    SYSTEM_PROMPT,
)
from src.ai_client import AIClient, LLMError
from src.circuit_breaker import CircuitBreaker, CircuitOpenError
from src.language import detect_intent, detect_language, is_greeting, mentions_pricing
from src.runtime_state import ReplyHistory

logger = logging.getLogger(__name__)

LLM_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.6
TEMPLATE_CONFIDENCE = 0.8
TRUNCATE_WORDS = 6
HISTORY_FETCH = 8


@dataclass(frozen=True)
class GeneratedReply:
    text: str
    language: str
    intent: str
    confidence: float
    source: str  # llm | fallback | template


class ResponseGenerator:
    """Builds a reply for one inbound message."""

    def __init__(
        self,
        ai_client: AIClient | None,
        memory,
        history: ReplyHistory,
        breaker: CircuitBreaker | None = None,
        max_reply_length: int = 50,
        history_messages: int = 6,
        temperature: float = 0.7,
        max_tokens: int = 150,
        rng: random.Random | None = None,
    ) -> None:
        self.ai = ai_client
        self.memory = memory
        self.history = history
        self.breaker = breaker or CircuitBreaker("llm")
        self.max_reply_length = max_reply_length
        self.history_messages = history_messages
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.rng = rng or random.Random()

    # =========================================================================
    # Public API
    # =========================================================================

    async def generate(
        self,
        conversation_id: str | None,
        user_message: str,
        personality_hint: str | None = None,
    ) -> GeneratedReply:
        """
        Generate a reply to `user_message`.

        Args:
            conversation_id: Conversation to pull memory from. None when the
                store is unavailable; the prompt then has no history.
            user_message: The inbound text.
            personality_hint: Personality key or free text for the prompt.

        Returns:
            GeneratedReply. Never raises for LLM problems.
        """
        language = detect_language(user_message)
        intent = detect_intent(user_message)

        if self.ai is None:
            return self._fallback(language, intent)

        messages = await self._build_messages(conversation_id, user_message, personality_hint)
        try:
            candidate = await self.breaker.call(
                self.ai.complete,
                messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except (LLMError, CircuitOpenError) as e:
            logger.warning(f"LLM reply failed for '{user_message[:50]}': {e}")
            return self._fallback(language, intent)

        candidate = self._govern_length(candidate.strip().strip("\"'"), language, user_message)
        if not candidate:
            return self._fallback(language, intent)

        if candidate in self.history:
            logger.info(f"Discarding repeated reply '{candidate}', using fallback")
            return self._fallback(language, intent)

        return self._finalize(candidate, language, intent, LLM_CONFIDENCE, "llm")

    def from_templates(self, templates: tuple[str, ...] | list[str], user_message: str) -> GeneratedReply:
        """Pick a rule template that was not sent recently."""
        language = detect_language(user_message)
        intent = detect_intent(user_message)

        fresh = [t for t in templates if t not in self.history]
        if not fresh:
            if not templates:
                return self._fallback(language, intent)
            fresh = [self._least_recent(templates)]
        return self._finalize(self.rng.choice(fresh), language, intent, TEMPLATE_CONFIDENCE, "template")

    # =========================================================================
    # Prompt
    # =========================================================================

    async def _build_messages(
        self,
        conversation_id: str | None,
        user_message: str,
        personality_hint: str | None,
    ) -> list[dict]:
        history: list[dict] = []
        context: list[dict] = []
        if conversation_id is not None and self.memory is not None:
            try:
                history = await self.memory.get_conversation_history(
                    conversation_id, limit=HISTORY_FETCH
                )
                context = await self.memory.get_conversation_context(conversation_id)
            except Exception as e:
                logger.warning(f"Could not load memory for {conversation_id}: {e}")

        # The inbound message is already stored; keep it out of the history block
        if history and history[-1].get("sender") == "user" and history[-1].get("content") == user_message:
            history = history[:-1]
        recent = history[-self.history_messages:] if self.history_messages > 0 else []

        history_text = "\n".join(
            f"{'Customer' if m.get('sender') == 'user' else 'You'}: {m.get('content', '')}"
            for m in recent
        ) or "No previous messages"
        context_text = "\n".join(
            f"{c.get('context_type')}: {c.get('context_value')}" for c in context
        ) or "None"

        personality = PERSONALITIES.get((personality_hint or "").lower(), personality_hint)
        prompt = SYSTEM_PROMPT.format(
            personality=personality or DEFAULT_PERSONALITY,
            history=history_text,
            context=context_text,
            message=user_message,
        )

        messages = [{"role": "system", "content": prompt}]
        last_ai = next((m for m in reversed(history) if m.get("sender") == "ai"), None)
        if last_ai and is_greeting(last_ai.get("content", "")) and not is_greeting(user_message):
            messages.append({"role": "system", "content": NO_REPEAT_GREETING})
        messages.append({"role": "user", "content": user_message})
        return messages

    # =========================================================================
    # Post-processing
    # =========================================================================

    def _govern_length(self, text: str, language: str, user_message: str = "") -> str:
        if len(text) <= self.max_reply_length:
            return text
        if mentions_pricing(text) or mentions_pricing(user_message):
            return SHORT_PRICING_REPLIES[language]

        shortened = " ".join(text.split()[:TRUNCATE_WORDS])
        while len(shortened) > self.max_reply_length and " " in shortened:
            shortened = shortened.rsplit(" ", 1)[0]
        return shortened[: self.max_reply_length]

    def _fallback(self, language: str, intent: str) -> GeneratedReply:
        pool = FALLBACK_REPLIES[language][intent]
        text = next((reply for reply in pool if reply not in self.history), None)
        if text is None:
            text = self._least_recent(pool)
        return self._finalize(text, language, intent, FALLBACK_CONFIDENCE, "fallback")

    def _least_recent(self, options) -> str:
        return min(options, key=self.history.recency)

    def _finalize(
        self,
        text: str,
        language: str,
        intent: str,
        confidence: float,
        source: str,
    ) -> GeneratedReply:
        self.history.add(text)
        logger.info(
            f"Reply ready ({source}, {language}/{intent}, confidence {confidence}): {text}"
        )
        return GeneratedReply(
            text=text,
            language=language,
            intent=intent,
            confidence=confidence,
            source=source,
        )
