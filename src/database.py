"""
Database Client - Supabase integration for persistence.

This module handles all store operations using Supabase as the backend.
It mirrors the async API of `SQLiteDatabase`, which is used locally and as
a fallback when Supabase is not configured or unreachable.

Tables:
    social_accounts (read-only here):
        - account_id: Instagram account/page id from webhooks
        - workspace_id: Owning workspace
        - username, access_token

    automation_rules (read-only here):
        - id, workspace_id, position
        - rule fields in any historical shape (normalized by src.rules)

    dm_conversations:
        - id: UUID (primary key)
        - workspace_id, platform, participant_id (unique together)
        - participant_username
        - message_count, last_message_at, created_at, updated_at

    dm_messages:
        - id: UUID (primary key)
        - conversation_id: UUID reference to dm_conversations
        - message_id: External id of inbound messages (NULL for ours)
        - sender: user | ai
        - content, sentiment, topics (text[])
        - automation_rule_id: Rule that produced an AI message
        - created_at

    conversation_context:
        - id: UUID (primary key)
        - conversation_id: UUID reference to dm_conversations
        - context_type: sentiment | topic | intent
        - context_value, confidence (0-100)
        - extracted_at, expires_at

SQL Setup (run in Supabase SQL Editor):
    CREATE TABLE dm_conversations (
        id UUID DEFAULT gen_random_uuid() PRIMARY KEY,
        workspace_id TEXT NOT NULL,
        platform TEXT NOT NULL DEFAULT 'instagram',
        participant_id TEXT NOT NULL,
        participant_username TEXT,
        message_count INT DEFAULT 0,
        last_message_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW(),
        UNIQUE (workspace_id, platform, participant_id)
    );

    CREATE TABLE dm_messages (
        id UUID DEFAULT gen_random_uuid() PRIMARY KEY,
        conversation_id UUID REFERENCES dm_conversations(id) ON DELETE CASCADE,
        message_id TEXT,
        sender TEXT NOT NULL CHECK (sender IN ('user', 'ai')),
        content TEXT NOT NULL,
        sentiment TEXT,
        topics TEXT[] DEFAULT '{}',
        automation_rule_id TEXT,
        created_at TIMESTAMPTZ DEFAULT NOW()
    );

    CREATE TABLE conversation_context (
        id UUID DEFAULT gen_random_uuid() PRIMARY KEY,
        conversation_id UUID REFERENCES dm_conversations(id) ON DELETE CASCADE,
        context_type TEXT NOT NULL,
        context_value TEXT NOT NULL,
        confidence INT CHECK (confidence BETWEEN 0 AND 100),
        extracted_at TIMESTAMPTZ DEFAULT NOW(),
        expires_at TIMESTAMPTZ NOT NULL
    );

    CREATE INDEX idx_dm_messages_message_id ON dm_messages(message_id);
    CREATE INDEX idx_context_expires ON conversation_context(expires_at);
"""

import logging
from datetime import datetime
from typing import Optional

from supabase import Client, create_client

from config import settings
from src.circuit_breaker import with_backoff
from src.database_sqlite import to_iso

logger = logging.getLogger(__name__)


class Database:
    """
    Supabase client for conversation memory and rule lookup.

    Provides async-friendly methods for every store operation the
    auto-responder needs. Write failures propagate to the caller; read
    helpers used on the hot path log and return empty results instead.
    """

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
    ) -> None:
        """
        Initialize database connection.

        Args:
            url: Supabase project URL. Defaults to config.
            key: Supabase anon/service key. Defaults to config.
        """
        self._url = url or settings.supabase_url
        self._key = key or settings.supabase_key
        self.client: Optional[Client] = None
        self._is_connected = False

        self._connect()
        logger.info("Database client initialized")

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            url = self._url.rstrip("/")
            logger.info(f"Connecting to database at: {url}")
            self.client = create_client(url, self._key)
            self._is_connected = True
            logger.info("Database connection established")
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            self._is_connected = False
            raise

    @with_backoff(max_retries=3, base_delay=1, max_delay=10)
    async def _ensure_connection(self) -> None:
        """
        Ensure database connection is active, reconnect if needed.

        Raises:
            Exception: If reconnection fails after retries.
        """
        if not self._is_connected or self.client is None:
            logger.warning("Database connection lost, attempting reconnect...")
            self._connect()

    async def health_check(self) -> bool:
        """
        Check database connection health.

        Returns:
            True if database is accessible, False otherwise.
        """
        try:
            await self._ensure_connection()
            self.client.table("dm_conversations").select("id", count="exact").limit(1).execute()
            logger.debug("Database health check: OK")
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            self._is_connected = False
            return False

    # =========================================================================
    # Accounts & Rules
    # =========================================================================

    async def get_social_account(self, account_id: str) -> dict | None:
        await self._ensure_connection()
        result = self.client.table("social_accounts").select("*").eq(
            "account_id", account_id
        ).limit(1).execute()
        return result.data[0] if result.data else None

    async def upsert_social_account(
        self,
        account_id: str,
        workspace_id: str,
        username: str | None = None,
        access_token: str | None = None,
        platform: str = "instagram",
    ) -> str:
        await self._ensure_connection()
        result = self.client.table("social_accounts").upsert({
            "account_id": account_id,
            "workspace_id": workspace_id,
            "username": username,
            "access_token": access_token,
            "platform": platform,
        }, on_conflict="account_id").execute()
        return result.data[0]["id"]

    async def get_automation_rules(self, workspace_id: str) -> list[dict]:
        """
        Rule rows for a workspace, in priority order.

        Returns an empty list on read failure so a broken rules table
        means "no automation" rather than a crashed webhook.
        """
        try:
            await self._ensure_connection()
            result = self.client.table("automation_rules").select("*").eq(
                "workspace_id", workspace_id
            ).order("position").execute()
            return result.data or []
        except Exception as e:
            logger.error(f"Failed to load automation rules for {workspace_id}: {e}")
            return []

    async def save_automation_rule(self, workspace_id: str, document: dict, position: int = 0) -> str:
        await self._ensure_connection()
        result = self.client.table("automation_rules").upsert({
            **document,
            "workspace_id": workspace_id,
            "position": position,
        }).execute()
        return str(result.data[0]["id"])

    # =========================================================================
    # Conversations
    # =========================================================================

    async def get_conversation(
        self,
        workspace_id: str,
        platform: str,
        participant_id: str,
    ) -> dict | None:
        await self._ensure_connection()
        result = self.client.table("dm_conversations").select("*").eq(
            "workspace_id", workspace_id
        ).eq("platform", platform).eq("participant_id", participant_id).limit(1).execute()
        return result.data[0] if result.data else None

    async def get_conversation_by_id(self, conversation_id: str) -> dict | None:
        await self._ensure_connection()
        result = self.client.table("dm_conversations").select("*").eq(
            "id", conversation_id
        ).limit(1).execute()
        return result.data[0] if result.data else None

    async def create_conversation(
        self,
        workspace_id: str,
        platform: str,
        participant_id: str,
        participant_username: str | None,
        created_at: datetime,
    ) -> dict:
        """Insert a conversation; on a unique-key race, return the winner."""
        await self._ensure_connection()
        try:
            result = self.client.table("dm_conversations").insert({
                "workspace_id": workspace_id,
                "platform": platform,
                "participant_id": participant_id,
                "participant_username": participant_username,
                "message_count": 0,
                "last_message_at": to_iso(created_at),
                "created_at": to_iso(created_at),
            }).execute()
            if result.data:
                logger.info(f"Created conversation {result.data[0]['id']} with {participant_id}")
                return result.data[0]
        except Exception as e:
            if "duplicate" not in str(e).lower() and "23505" not in str(e):
                raise
            logger.debug(f"Conversation with {participant_id} already exists")

        existing = await self.get_conversation(workspace_id, platform, participant_id)
        if existing is None:
            raise RuntimeError(f"Could not create conversation with {participant_id}")
        return existing

    async def touch_conversation(self, conversation_id: str, at: datetime) -> None:
        await self._ensure_connection()
        current = await self.get_conversation_by_id(conversation_id)
        count = (current or {}).get("message_count") or 0
        self.client.table("dm_conversations").update({
            "message_count": count + 1,
            "last_message_at": to_iso(at),
            "updated_at": to_iso(at),
        }).eq("id", conversation_id).execute()

    # =========================================================================
    # Messages
    # =========================================================================

    async def message_exists(self, message_id: str) -> bool:
        await self._ensure_connection()
        result = self.client.table("dm_messages").select(
            "id", count="exact"
        ).eq("message_id", message_id).execute()
        return (result.count or 0) > 0

    async def insert_message(
        self,
        conversation_id: str,
        message_id: str | None,
        sender: str,
        content: str,
        sentiment: str | None,
        topics: list[str],
        automation_rule_id: str | None,
        created_at: datetime,
    ) -> dict:
        await self._ensure_connection()
        result = self.client.table("dm_messages").insert({
            "conversation_id": conversation_id,
            "message_id": message_id,
            "sender": sender,
            "content": content,
            "sentiment": sentiment,
            "topics": topics,
            "automation_rule_id": automation_rule_id,
            "created_at": to_iso(created_at),
        }).execute()
        return result.data[0]

    async def get_messages(self, conversation_id: str, limit: int) -> list[dict]:
        await self._ensure_connection()
        result = self.client.table("dm_messages").select("*").eq(
            "conversation_id", conversation_id
        ).order("created_at", desc=True).limit(limit).execute()
        return result.data or []

    # =========================================================================
    # Context
    # =========================================================================

    async def insert_context(self, conversation_id: str, rows: list[dict]) -> None:
        if not rows:
            return
        await self._ensure_connection()
        self.client.table("conversation_context").insert([
            {
                "conversation_id": conversation_id,
                "context_type": row["context_type"],
                "context_value": row["context_value"],
                "confidence": row["confidence"],
                "extracted_at": to_iso(row["extracted_at"]),
                "expires_at": to_iso(row["expires_at"]),
            }
            for row in rows
        ]).execute()

    async def get_context(self, conversation_id: str, now: datetime) -> list[dict]:
        await self._ensure_connection()
        result = self.client.table("conversation_context").select("*").eq(
            "conversation_id", conversation_id
        ).gt("expires_at", to_iso(now)).order("extracted_at", desc=True).execute()
        return result.data or []

    # =========================================================================
    # Cleanup & Stats
    # =========================================================================

    async def delete_expired_context(self, now: datetime) -> int:
        await self._ensure_connection()
        result = self.client.table("conversation_context").delete().lte(
            "expires_at", to_iso(now)
        ).execute()
        return len(result.data or [])

    async def delete_messages_before(self, cutoff: datetime) -> int:
        await self._ensure_connection()
        result = self.client.table("dm_messages").delete().lt(
            "created_at", to_iso(cutoff)
        ).execute()
        return len(result.data or [])

    async def get_conversation_stats(self, workspace_id: str, active_since: datetime) -> dict:
        await self._ensure_connection()
        conversations = self.client.table("dm_conversations").select(
            "id, message_count, last_message_at"
        ).eq("workspace_id", workspace_id).execute().data or []

        return {
            "total_conversations": len(conversations),
            "active_conversations": sum(
                1 for c in conversations
                if c.get("last_message_at")
                and datetime.fromisoformat(c["last_message_at"]) >= active_since
            ),
            "total_messages": sum(c.get("message_count") or 0 for c in conversations),
        }
