"""
Main orchestrator for the Instagram Auto-Reply Engine.

This module wires every component together and owns the per-event flow.

Responsibilities:
    1. Initialize components (store, AI client, governor, publisher, queue)
    2. Turn normalized webhook events into scheduled replies
    3. Persist conversation memory around each reply
    4. Run the memory cleanup worker next to the web server
    5. Shut everything down cleanly

Flow (per event, inside a background task):
    ┌─────────────────────────────────────────────────────────────┐
    │  1. Drop echoes and duplicates (memory set + store lookup)  │
    │  2. Look up the connected account (workspace, token)        │
    │  3. Match an automation rule                                │
    │  4. Load/create conversation, store the inbound message     │
    │  5. Stealth governor: respond at all? how long to wait?     │
    │  6. Generate reply (LLM or template) and naturalize it      │
    │  7. Schedule delivery on the delay queue                    │
    │  8. Deliver via the fallback ladder, store our reply        │
    └─────────────────────────────────────────────────────────────┘

Entry Point:
    python -m src.bot
"""

import asyncio
import logging
import random
import signal
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import uvicorn

from config.settings import Settings
from src.ai_client import AIClient
from src.background_worker import run_cleanup_worker
from src.circuit_breaker import CircuitBreaker
from src.delay_queue import DelayQueue
from src.events import EchoEvent, WebhookEvent
from src.memory import ConversationMemory
from src.message_analyzer import MessageAnalyzer
from src.platform_client import PlatformClient
from src.publisher import AdaptivePublisher, DeliveryResult, DeliverySuccess, ReplyTarget
from src.response_generator import ResponseGenerator
from src.rules import RuleMatcher, load_rules
from src.runtime_state import RuntimeState
from src.scheduler import get_delay_description
from src.stealth_governor import StealthGovernor
from src.webhook import create_app

logger = logging.getLogger(__name__)

PLATFORM = "instagram"


@dataclass
class ResponseOutcome:
    """What happened to one inbound event."""

    key: str
    status: str  # echo | duplicate | no_account | no_rule | skipped | scheduled | error
    reason: str | None = None
    reply: str | None = None
    delay_seconds: float = 0.0
    token: str | None = None


def create_store(settings: Settings):
    """
    Pick the persistent store.

    Supabase when configured and reachable, otherwise local SQLite.
    """
    if settings.supabase_configured:
        try:
            from src.database import Database
            db = Database(settings.supabase_url, settings.supabase_key)
            logger.info("Database initialized (Supabase)")
            return db
        except Exception as e:
            logger.warning(f"Supabase unavailable ({e}), falling back to SQLite")

    from src.database_sqlite import SQLiteDatabase
    db = SQLiteDatabase(settings.sqlite_path)
    logger.info("Database initialized (SQLite)")
    return db


class AutoResponder:
    """
    Processes webhook events end to end.

    All mutable process state lives in `runtime` (dedup set, governor
    counters, reply history, rule counters) so tests and multiple
    responders never share hidden globals.
    """

    def __init__(
        self,
        store,
        runtime: RuntimeState,
        memory: ConversationMemory,
        generator: ResponseGenerator,
        governor: StealthGovernor,
        publisher: AdaptivePublisher,
        delay_queue: DelayQueue,
        ai_client: AIClient | None = None,
        cleanup_interval: float = 3600,
    ) -> None:
        self.store = store
        self.runtime = runtime
        self.memory = memory
        self.generator = generator
        self.governor = governor
        self.publisher = publisher
        self.delay_queue = delay_queue
        self.ai = ai_client
        self.matcher = RuleMatcher(runtime.rule_counter)
        self.cleanup_interval = cleanup_interval

        self._cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store=None,
        ai_client: AIClient | None = None,
        platform_client: PlatformClient | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "AutoResponder":
        """
        Build a responder and all of its components from settings.

        Args:
            settings: Application settings.
            store: Store to use instead of create_store(settings).
            ai_client: LLM client. Built from settings when an API key is
                configured; without one every reply is a fallback.
            platform_client: Graph API client (tests pass a mock transport).
            rng: Random source shared by governor and generator.
            sleep: Sleep used for delayed sends and delivery retries.
        """
        store = store if store is not None else create_store(settings)
        if ai_client is None and settings.ai_api_key:
            ai_client = AIClient.from_settings(settings)
        rng = rng or random.Random()

        runtime = RuntimeState.from_settings(settings)
        ai_breaker = CircuitBreaker(
            name="ai_service",
            failure_threshold=3,
            recovery_timeout=60,
            half_open_max_calls=2,
        )
        memory = ConversationMemory(
            store,
            MessageAnalyzer(ai_client, ai_breaker),
            retention_days=settings.memory_retention_days,
        )
        generator = ResponseGenerator(
            ai_client,
            memory,
            runtime.reply_history,
            breaker=ai_breaker,
            max_reply_length=settings.max_reply_length,
            history_messages=settings.history_prompt_messages,
            temperature=settings.ai_temperature,
            max_tokens=settings.ai_max_tokens,
            rng=rng,
        )
        governor = StealthGovernor.from_settings(settings, runtime.governor, rng=rng)
        publisher = AdaptivePublisher(
            platform_client or PlatformClient.from_settings(settings),
            sleep=sleep,
        )
        return cls(
            store=store,
            runtime=runtime,
            memory=memory,
            generator=generator,
            governor=governor,
            publisher=publisher,
            delay_queue=DelayQueue(sleep=sleep),
            ai_client=ai_client,
            cleanup_interval=settings.cleanup_interval_seconds,
        )

    # =========================================================================
    # Event Processing
    # =========================================================================

    async def handle_events(self, events: list[WebhookEvent]) -> list[ResponseOutcome]:
        """Process a webhook batch in order. Never raises."""
        outcomes = []
        for event in events:
            outcomes.append(await self.handle_event(event))
        return outcomes

    async def handle_event(self, event: WebhookEvent) -> ResponseOutcome:
        """Process one event. Errors are logged and reported as status "error"."""
        if isinstance(event, EchoEvent):
            return ResponseOutcome(key=event.external_id, status="echo")

        key = event.dedup_key
        try:
            return await self._process(event)
        except Exception as e:
            logger.error(f"Error processing event {key}: {e}", exc_info=True)
            return ResponseOutcome(key=key, status="error", reason=str(e))

    async def _process(self, event) -> ResponseOutcome:
        key = event.dedup_key

        if await self.runtime.deduplicator.check_and_mark(key):
            logger.debug(f"Duplicate event {key} dropped")
            return ResponseOutcome(key=key, status="duplicate")
        if await self.memory.has_message(event.external_id):
            logger.debug(f"Event {key} already stored, dropping")
            return ResponseOutcome(key=key, status="duplicate")

        account = await self.store.get_social_account(event.account_id)
        if not account or not account.get("access_token"):
            logger.info(f"No connected account for {event.account_id}, ignoring {key}")
            return ResponseOutcome(key=key, status="no_account")

        workspace_id = account["workspace_id"]
        rules = load_rules(await self.store.get_automation_rules(workspace_id))
        match = self.matcher.match(rules, event)
        if match.selected is None:
            logger.info(f"No rule matched {event.rule_type} {key}")
            return ResponseOutcome(key=key, status="no_rule")
        rule = match.selected

        conversation_id = await self._remember_inbound(event, workspace_id)

        decision = self.governor.should_respond(event.participant_id, event.text)
        if not decision.accepted:
            logger.info(f"Skipping reply to {key}: {decision.reason}")
            return ResponseOutcome(key=key, status="skipped", reason=decision.reason)
        self.runtime.rule_counter.record(rule.id)

        if rule.uses_ai or not rule.responses:
            reply = await self.generator.generate(conversation_id, event.text, rule.personality)
        else:
            reply = self.generator.from_templates(rule.responses, event.text)
        text = self.governor.naturalize(reply.text)

        delay = decision.delay_seconds + rule.conditions.time_delay_minutes * 60
        target = ReplyTarget(
            kind=event.rule_type,
            account_id=event.account_id,
            access_token=account["access_token"],
            object_id=event.comment_id if event.rule_type == "comment" else event.sender_id,
            text=text,
        )

        async def deliver() -> DeliveryResult:
            return await self._deliver(target, conversation_id, rule.id)

        token = self.delay_queue.schedule(delay, deliver, rule_id=rule.id, label=f"reply to {key}")
        logger.info(
            f"Reply to {key} via rule '{rule.name}' ({reply.source}, "
            f"{reply.language}/{reply.intent}, confidence {reply.confidence}) "
            f"scheduled {get_delay_description(delay)}"
        )
        return ResponseOutcome(
            key=key,
            status="scheduled",
            reply=text,
            delay_seconds=delay,
            token=token,
        )

    async def _remember_inbound(self, event, workspace_id: str) -> str | None:
        """Store the inbound message. Returns None when the store is failing."""
        try:
            conversation = await self.memory.get_or_create_conversation(
                workspace_id, PLATFORM, event.participant_id, event.sender_username
            )
            await self.memory.store_message(
                conversation["id"], event.external_id, "user", event.text
            )
            return conversation["id"]
        except Exception as e:
            logger.error(f"Memory store failed for {event.dedup_key}, replying without memory: {e}")
            return None

    async def _deliver(
        self,
        target: ReplyTarget,
        conversation_id: str | None,
        rule_id: str,
    ) -> DeliveryResult:
        result = await self.publisher.publish(target)
        if isinstance(result, DeliverySuccess) and conversation_id is not None:
            try:
                await self.memory.store_message(conversation_id, None, "ai", target.text, rule_id)
            except Exception as e:
                logger.error(f"Failed to store sent reply {result.id}: {e}")
        return result

    # =========================================================================
    # Health & Lifecycle
    # =========================================================================

    async def health_status(self) -> dict:
        """Component status for GET /health."""
        db_healthy = await self._check_db()
        return {
            "status": "healthy" if db_healthy else "degraded",
            "database": "healthy" if db_healthy else "unhealthy",
            "ai": {
                "configured": self.ai is not None,
                "circuit_breaker": self.generator.breaker.get_status(),
            },
            "pending_replies": len(self.delay_queue),
            "runtime": self.runtime.get_status(),
        }

    async def _check_db(self) -> bool:
        try:
            return await self.store.health_check()
        except Exception:
            return False

    def start_background(self) -> None:
        """Start the memory cleanup worker."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(
                run_cleanup_worker(self.memory, self.cleanup_interval),
                name="memory_cleanup",
            )
            logger.info("Cleanup worker started")

    async def stop(self) -> None:
        """Cancel pending sends and background tasks."""
        pending = len(self.delay_queue)
        await self.delay_queue.shutdown()
        if pending:
            logger.info(f"Cancelled {pending} pending replies")

        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass

        logger.info("Responder stopped")


async def main() -> None:
    """
    Main entry point.

    Builds the responder, serves the webhook with uvicorn and runs the
    cleanup worker until a shutdown signal arrives.
    """
    from config import settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Suppress noisy HTTP logs
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger.info("=" * 60)
    logger.info("Starting Instagram Auto-Reply Engine")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Daily cap: {settings.max_daily_responses}, sampling: {settings.response_sampling_rate}")
    logger.info("=" * 60)

    responder = AutoResponder.from_settings(settings)
    app = create_app(settings, responder)
    server = uvicorn.Server(
        uvicorn.Config(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    )

    responder.start_background()

    # uvicorn installs its own SIGINT/SIGTERM handlers on serve(); this one
    # only covers platforms where it cannot
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Shutdown signal received")
        server.should_exit = True

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            pass

    try:
        await server.serve()
    except asyncio.CancelledError:
        logger.info("Server cancelled")
    finally:
        await responder.stop()

    logger.info("Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
