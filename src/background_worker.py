"""
Background Worker - Periodic conversation-memory cleanup.

Expired context rows are already invisible to readers; this loop actually
deletes them (and messages past the retention window) so the tables stay
small.

Architecture:
    ┌─────────────────────────────────────────────────────────────┐
    │                   CLEANUP WORKER                            │
    ├─────────────────────────────────────────────────────────────┤
    │  Loop (every N seconds):                                    │
    │  1. Delete context rows with expires_at <= now              │
    │  2. Delete messages older than now - retention              │
    │  3. Sleep until next sweep                                  │
    └─────────────────────────────────────────────────────────────┘

Integration:
    Runs as its own asyncio task next to the web server. It only issues
    range deletes, so request handling is never blocked behind it.

Configuration:
    CLEANUP_INTERVAL_SECONDS: Seconds between sweeps (default: 3600)
"""

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.memory import ConversationMemory

logger = logging.getLogger(__name__)


async def run_cleanup_worker(
    memory: "ConversationMemory",
    interval: float = 3600,
) -> None:
    """
    Sweep expired memory forever.

    Args:
        memory: Conversation memory to clean.
        interval: Seconds between sweeps.
    """
    logger.info(f"Cleanup worker started (interval: {interval}s)")

    while True:
        await run_cleanup_once(memory)
        await asyncio.sleep(interval)


async def run_cleanup_once(memory: "ConversationMemory") -> dict:
    """
    One sweep. Errors are logged and reported as zero deletions.

    Returns:
        {"context_deleted": int, "messages_deleted": int}
    """
    try:
        return await memory.cleanup_expired_memory()
    except Exception as e:
        logger.error(f"Error in cleanup worker: {e}")
        return {"context_deleted": 0, "messages_deleted": 0}
