"""
Conversation Memory - Per-participant history and expiring context.

Each (workspace, platform, participant) pair owns one conversation. Every
inbound message is analyzed and leaves short-lived context rows behind
(sentiment, topics, intent) that the response generator reads back for the
next few days.

Lifecycle:
    ┌─────────────────────────────────────────────────────────────┐
    │  inbound message                                            │
    │    → analyze (LLM, degrades to neutral on failure)          │
    │    → insert message + context rows (expires now + 3 days)   │
    │    → bump message_count / last_message_at                   │
    │                                                             │
    │  reads only ever see context with expires_at > now         │
    │                                                             │
    │  cleanup worker (own timer)                                 │
    │    → delete context with expires_at <= now                  │
    │    → delete messages older than the retention window        │
    └─────────────────────────────────────────────────────────────┘

Writes for one conversation are serialized with a per-conversation
asyncio.Lock. Store write failures propagate to the caller.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Callable

from src.message_analyzer import MessageAnalyzer

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 3

# Confidence recorded for each kind of derived context (0-100)
SENTIMENT_CONFIDENCE = 85
TOPIC_CONFIDENCE = 80
INTENT_CONFIDENCE = 90


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationMemory:
    """Conversation memory over a SQLiteDatabase or Supabase Database."""

    def __init__(
        self,
        store,
        analyzer: MessageAnalyzer,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Args:
            store: SQLiteDatabase or Database.
            analyzer: Sentiment/topic extractor for inbound messages.
            retention_days: How long context and messages are kept.
            clock: Returns the current aware datetime. Injectable for tests.
        """
        self.store = store
        self.analyzer = analyzer
        self.retention = timedelta(days=retention_days)
        self._clock = clock
        # Entries disappear once no coroutine holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    async def get_or_create_conversation(
        self,
        workspace_id: str,
        platform: str,
        participant_id: str,
        username: str | None = None,
    ) -> dict:
        conversation = await self.store.get_conversation(workspace_id, platform, participant_id)
        if conversation is not None:
            return conversation
        return await self.store.create_conversation(
            workspace_id, platform, participant_id, username, self._clock()
        )

    async def store_message(
        self,
        conversation_id: str,
        external_id: str | None,
        sender: str,
        content: str,
        rule_id: str | None = None,
    ) -> dict:
        """
        Append a message and, for user messages, its derived context.

        Args:
            conversation_id: Target conversation.
            external_id: Platform message/comment id (None for our replies).
            sender: "user" or "ai".
            content: Message text.
            rule_id: Automation rule that produced an AI message.

        Returns:
            The stored message row.
        """
        if sender not in ("user", "ai"):
            raise ValueError(f"Unknown sender {sender!r}")

        sentiment = None
        topics: list[str] = []
        context_rows: list[dict] = []
        now = self._clock()

        if sender == "user":
            analysis = await self.analyzer.analyze(content)
            sentiment, topics = analysis.sentiment, analysis.topics
            expires_at = now + self.retention

            def row(kind: str, value: str, confidence: int) -> dict:
                return {
                    "context_type": kind,
                    "context_value": value,
                    "confidence": confidence,
                    "extracted_at": now,
                    "expires_at": expires_at,
                }

            if sentiment != "neutral":
                context_rows.append(row("sentiment", sentiment, SENTIMENT_CONFIDENCE))
            context_rows.extend(row("topic", topic, TOPIC_CONFIDENCE) for topic in topics)
            if analysis.intent:
                context_rows.append(row("intent", analysis.intent, INTENT_CONFIDENCE))

        async with self._lock_for(conversation_id):
            message = await self.store.insert_message(
                conversation_id=conversation_id,
                message_id=external_id,
                sender=sender,
                content=content,
                sentiment=sentiment,
                topics=topics,
                automation_rule_id=rule_id,
                created_at=now,
            )
            await self.store.insert_context(conversation_id, context_rows)
            await self.store.touch_conversation(conversation_id, now)

        logger.debug(
            f"Stored {sender} message in {conversation_id} "
            f"({len(context_rows)} context rows)"
        )
        return message

    async def has_message(self, external_id: str) -> bool:
        """Durable duplicate check on the inbound external id."""
        return await self.store.message_exists(external_id)

    async def get_conversation_history(self, conversation_id: str, limit: int = 10) -> list[dict]:
        """Newest `limit` messages, oldest first."""
        messages = await self.store.get_messages(conversation_id, limit)
        return list(reversed(messages))

    async def get_conversation_context(self, conversation_id: str) -> list[dict]:
        return await self.store.get_context(conversation_id, self._clock())

    async def cleanup_expired_memory(self) -> dict:
        """Range-delete expired context and messages past retention."""
        now = self._clock()
        context_deleted = await self.store.delete_expired_context(now)
        messages_deleted = await self.store.delete_messages_before(now - self.retention)
        if context_deleted or messages_deleted:
            logger.info(
                f"Memory cleanup: {context_deleted} context rows, "
                f"{messages_deleted} messages removed"
            )
        return {"context_deleted": context_deleted, "messages_deleted": messages_deleted}

    async def get_conversation_stats(self, workspace_id: str) -> dict:
        return await self.store.get_conversation_stats(workspace_id, self._clock() - self.retention)
