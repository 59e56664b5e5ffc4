"""
SQLite Database - Local store and fallback for Supabase.

This module provides a SQLite-based store for local development and testing,
or as a fallback when Supabase is unavailable. It exposes the same async API
as the Supabase `Database` class so the memory layer does not care which one
it talks to.

Timestamps are stored as UTC ISO-8601 strings with fixed microsecond
precision, so range filters can compare them as text.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Default SQLite database path
DEFAULT_DB_PATH = Path("autoreply.db")


def to_iso(moment: datetime) -> str:
    """Serialize a datetime as sortable UTC text."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SQLiteDatabase:
    """
    SQLite implementation of the store interface.

    Provides the same API as the Supabase Database class for seamless fallback.
    """

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH):
        """Initialize SQLite database."""
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._is_connected = False

        self._connect()
        self._create_tables()
        logger.info(f"SQLite database initialized: {db_path}")

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self._is_connected = True
            logger.info("SQLite connection established")
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to SQLite: {e}")
            self._is_connected = False
            raise

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        cursor = self.conn.cursor()

        # Connected Instagram accounts (read-only collaborator data)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS social_accounts (
                id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL UNIQUE,
                workspace_id TEXT NOT NULL,
                platform TEXT DEFAULT 'instagram',
                username TEXT,
                access_token TEXT,
                created_at TEXT
            )
        """)

        # Automation rules, stored as JSON documents
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS automation_rules (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                position INTEGER DEFAULT 0,
                document TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dm_conversations (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                platform TEXT NOT NULL,
                participant_id TEXT NOT NULL,
                participant_username TEXT,
                message_count INTEGER DEFAULT 0,
                last_message_at TEXT,
                created_at TEXT,
                UNIQUE (workspace_id, platform, participant_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dm_messages (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL REFERENCES dm_conversations(id),
                message_id TEXT,
                sender TEXT NOT NULL CHECK (sender IN ('user', 'ai')),
                content TEXT NOT NULL,
                sentiment TEXT,
                topics TEXT DEFAULT '[]',
                automation_rule_id TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS conversation_context (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL REFERENCES dm_conversations(id),
                context_type TEXT NOT NULL,
                context_value TEXT NOT NULL,
                confidence INTEGER DEFAULT 0,
                extracted_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            )
        """)

        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_dm_messages_conversation "
            "ON dm_messages(conversation_id, created_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_dm_messages_message_id ON dm_messages(message_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_context_expires ON conversation_context(expires_at)"
        )

        self.conn.commit()
        logger.info("SQLite tables created/verified")

    def _generate_uuid(self) -> str:
        """Generate a UUID for primary keys."""
        return str(uuid.uuid4())

    async def _ensure_connection(self) -> None:
        """Ensure database connection is active."""
        if not self._is_connected or self.conn is None:
            self._connect()

    async def health_check(self) -> bool:
        """Check database connection health."""
        try:
            await self._ensure_connection()
            cursor = self.conn.cursor()
            cursor.execute("SELECT 1")
            return True
        except sqlite3.Error as e:
            logger.error(f"SQLite health check failed: {e}")
            return False

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
            self._is_connected = False

    # =========================================================================
    # Accounts & Rules (read side, plus seeding helpers)
    # =========================================================================

    async def get_social_account(self, account_id: str) -> dict | None:
        """Find a connected account by its Instagram account/page id."""
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM social_accounts WHERE account_id = ?", (account_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    async def upsert_social_account(
        self,
        account_id: str,
        workspace_id: str,
        username: str | None = None,
        access_token: str | None = None,
        platform: str = "instagram",
    ) -> str:
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.execute("SELECT id FROM social_accounts WHERE account_id = ?", (account_id,))
        existing = cursor.fetchone()
        if existing:
            cursor.execute("""
                UPDATE social_accounts
                SET workspace_id = ?, username = ?, access_token = ?, platform = ?
                WHERE id = ?
            """, (workspace_id, username, access_token, platform, existing["id"]))
            self.conn.commit()
            return existing["id"]

        row_id = self._generate_uuid()
        cursor.execute("""
            INSERT INTO social_accounts
            (id, account_id, workspace_id, platform, username, access_token, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (row_id, account_id, workspace_id, platform, username, access_token,
              to_iso(datetime.now(timezone.utc))))
        self.conn.commit()
        logger.info(f"Added social account @{username} ({account_id})")
        return row_id

    async def get_automation_rules(self, workspace_id: str) -> list[dict]:
        """Rule documents for a workspace, in priority order."""
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.execute("""
            SELECT document FROM automation_rules
            WHERE workspace_id = ?
            ORDER BY position, rowid
        """, (workspace_id,))
        return [json.loads(row["document"]) for row in cursor.fetchall()]

    async def save_automation_rule(self, workspace_id: str, document: dict, position: int = 0) -> str:
        await self._ensure_connection()

        rule_id = str(document.get("id") or self._generate_uuid())
        document = {**document, "id": rule_id}
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT OR REPLACE INTO automation_rules (id, workspace_id, position, document)
            VALUES (?, ?, ?, ?)
        """, (rule_id, workspace_id, position, json.dumps(document)))
        self.conn.commit()
        return rule_id

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

        cursor = self.conn.cursor()
        cursor.execute("""
            SELECT * FROM dm_conversations
            WHERE workspace_id = ? AND platform = ? AND participant_id = ?
        """, (workspace_id, platform, participant_id))
        row = cursor.fetchone()
        return dict(row) if row else None

    async def get_conversation_by_id(self, conversation_id: str) -> dict | None:
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM dm_conversations WHERE id = ?", (conversation_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    async def create_conversation(
        self,
        workspace_id: str,
        platform: str,
        participant_id: str,
        participant_username: str | None,
        created_at: datetime,
    ) -> dict:
        """Insert a conversation, returning the existing row on a race."""
        await self._ensure_connection()

        cursor = self.conn.cursor()
        try:
            conversation_id = self._generate_uuid()
            cursor.execute("""
                INSERT INTO dm_conversations
                (id, workspace_id, platform, participant_id, participant_username,
                 message_count, last_message_at, created_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?)
            """, (conversation_id, workspace_id, platform, participant_id,
                  participant_username, to_iso(created_at), to_iso(created_at)))
            self.conn.commit()
            logger.info(f"Created conversation {conversation_id} with {participant_id}")
        except sqlite3.IntegrityError:
            self.conn.rollback()
            logger.debug(f"Conversation with {participant_id} already exists")

        return await self.get_conversation(workspace_id, platform, participant_id)

    async def touch_conversation(self, conversation_id: str, at: datetime) -> None:
        """Bump message_count and last_message_at."""
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.execute("""
            UPDATE dm_conversations
            SET message_count = message_count + 1, last_message_at = ?
            WHERE id = ?
        """, (to_iso(at), conversation_id))
        self.conn.commit()

    # =========================================================================
    # Messages
    # =========================================================================

    async def message_exists(self, message_id: str) -> bool:
        """Check whether an inbound external message id was already stored."""
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM dm_messages WHERE message_id = ?", (message_id,))
        return cursor.fetchone()[0] > 0

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

        row_id = self._generate_uuid()
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO dm_messages
            (id, conversation_id, message_id, sender, content, sentiment, topics,
             automation_rule_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (row_id, conversation_id, message_id, sender, content, sentiment,
              json.dumps(topics), automation_rule_id, to_iso(created_at)))
        self.conn.commit()

        return {
            "id": row_id,
            "conversation_id": conversation_id,
            "message_id": message_id,
            "sender": sender,
            "content": content,
            "sentiment": sentiment,
            "topics": topics,
            "automation_rule_id": automation_rule_id,
            "created_at": to_iso(created_at),
        }

    async def get_messages(self, conversation_id: str, limit: int) -> list[dict]:
        """Most recent messages first."""
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.execute("""
            SELECT * FROM dm_messages
            WHERE conversation_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
        """, (conversation_id, limit))
        return [self._message_row(row) for row in cursor.fetchall()]

    @staticmethod
    def _message_row(row: sqlite3.Row) -> dict:
        message = dict(row)
        message["topics"] = json.loads(message.get("topics") or "[]")
        return message

    # =========================================================================
    # Context
    # =========================================================================

    async def insert_context(self, conversation_id: str, rows: list[dict]) -> None:
        """Insert derived context rows (context_type, context_value, confidence, ...)."""
        if not rows:
            return
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.executemany("""
            INSERT INTO conversation_context
            (id, conversation_id, context_type, context_value, confidence, extracted_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [
            (
                self._generate_uuid(),
                conversation_id,
                row["context_type"],
                row["context_value"],
                row["confidence"],
                to_iso(row["extracted_at"]),
                to_iso(row["expires_at"]),
            )
            for row in rows
        ])
        self.conn.commit()

    async def get_context(self, conversation_id: str, now: datetime) -> list[dict]:
        """Context rows that have not expired yet."""
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.execute("""
            SELECT * FROM conversation_context
            WHERE conversation_id = ? AND expires_at > ?
            ORDER BY extracted_at DESC
        """, (conversation_id, to_iso(now)))
        return [dict(row) for row in cursor.fetchall()]

    # =========================================================================
    # Cleanup & Stats
    # =========================================================================

    async def delete_expired_context(self, now: datetime) -> int:
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM conversation_context WHERE expires_at <= ?", (to_iso(now),))
        self.conn.commit()
        return cursor.rowcount

    async def delete_messages_before(self, cutoff: datetime) -> int:
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM dm_messages WHERE created_at < ?", (to_iso(cutoff),))
        self.conn.commit()
        return cursor.rowcount

    async def get_conversation_stats(self, workspace_id: str, active_since: datetime) -> dict:
        await self._ensure_connection()

        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT COUNT(*) FROM dm_conversations WHERE workspace_id = ?",
            (workspace_id,),
        )
        total = cursor.fetchone()[0]

        cursor.execute("""
            SELECT COUNT(*) FROM dm_conversations
            WHERE workspace_id = ? AND last_message_at >= ?
        """, (workspace_id, to_iso(active_since)))
        active = cursor.fetchone()[0]

        cursor.execute("""
            SELECT COUNT(*) FROM dm_messages m
            JOIN dm_conversations c ON c.id = m.conversation_id
            WHERE c.workspace_id = ?
        """, (workspace_id,))
        messages = cursor.fetchone()[0]

        return {
            "total_conversations": total,
            "active_conversations": active,
            "total_messages": messages,
        }
