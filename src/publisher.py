"""
Adaptive Publisher - Deliver content through an ordered fallback ladder.

Instagram accepts the same request one minute and rejects it the next. The
publisher tries the direct call first and, on failure, picks a recovery
strategy from the *type* of error raised by src.platform_client:

    ┌─────────────────────────────────────────────────────────────┐
    │  1. direct                content-type specific call        │
    │  2. on failure:                                             │
    │     MediaFormatError      → compression (one re-encoded     │
    │                             retry; plain-text for replies)  │
    │     PlatformPermission    → photo_fallback (video/reel) or  │
    │                             private_reply (comment → DM)    │
    │     TransientFetchError   → url_retry_1..3 after 2/5/10s    │
    │     anything else         → delayed_retry after 15s         │
    └─────────────────────────────────────────────────────────────┘

The first success wins and is tagged with its method, so platform
volatility shows up in logs. When nothing works, the result combines the
first and last error. Only that aggregate failure is logged as an error.

The publisher keeps no state between calls; every publish restarts the
ladder.

Usage:
    publisher = AdaptivePublisher(PlatformClient.from_settings(settings))
    result = await publisher.publish(
        ReplyTarget(kind="comment", account_id=..., access_token=...,
                    object_id=comment_id, text="ty! 🙌"),
    )
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from src.platform_client import (
    MediaFormatError,
    PlatformClient,
    PlatformError,
    PlatformPermissionError,
    TransientFetchError,
)

logger = logging.getLogger(__name__)

URL_RETRY_DELAYS = (2.0, 5.0, 10.0)
DELAYED_RETRY_SECONDS = 15.0
MAX_PLAIN_TEXT_LENGTH = 1000

# Emoji, pictographs and other astral-plane symbols
_NON_BMP = re.compile(r"[\U00010000-\U0010FFFF]")
_CONTROL = re.compile(r"[\u0000-\u001F\u007F\u200B-\u200F\uFE0F]")


# =============================================================================
# Targets & Results
# =============================================================================

@dataclass(frozen=True)
class MediaTarget:
    """Content to publish on the account's feed/stories."""

    account_id: str
    access_token: str
    content_type: str  # photo | video | reel | story
    media_url: str
    caption: str = ""


@dataclass(frozen=True)
class ReplyTarget:
    """An auto-reply to a comment or a DM thread."""

    kind: str  # comment | dm
    account_id: str
    access_token: str
    object_id: str  # comment id, or DM recipient id
    text: str


@dataclass(frozen=True)
class DeliverySuccess:
    id: str
    method: str


@dataclass(frozen=True)
class DeliveryFailure:
    reason: str
    first_error: PlatformError | None = None
    last_error: PlatformError | None = None


DeliveryResult = Union[DeliverySuccess, DeliveryFailure]
Transcoder = Callable[[str], Awaitable[str]]


class DeliveryExhausted(Exception):
    """Every strategy failed. Raised by publish_or_raise()."""

    def __init__(self, failure: DeliveryFailure) -> None:
        super().__init__(failure.reason)
        self.failure = failure


def sanitize_text(text: str) -> str:
    """Strip emoji and control characters, collapse whitespace."""
    cleaned = _CONTROL.sub("", _NON_BMP.sub("", text))
    cleaned = " ".join(cleaned.split())
    return cleaned[:MAX_PLAIN_TEXT_LENGTH]


# =============================================================================
# Publisher
# =============================================================================

class AdaptivePublisher:
    """Runs the fallback ladder for media posts and replies."""

    def __init__(
        self,
        client: PlatformClient,
        transcoder: Transcoder | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        url_retry_delays: tuple[float, ...] = URL_RETRY_DELAYS,
        delayed_retry_seconds: float = DELAYED_RETRY_SECONDS,
    ) -> None:
        """
        Args:
            client: Graph API client.
            transcoder: Re-encodes a video URL into a platform-friendly one
                and returns the new URL. Without it, video format errors are
                not recoverable.
            sleep: Awaitable sleep, replaced with a no-op in tests.
            url_retry_delays: Waits before each transient-fetch retry.
            delayed_retry_seconds: Wait before the generic last retry.
        """
        self.client = client
        self.transcoder = transcoder
        self._sleep = sleep
        self.url_retry_delays = url_retry_delays
        self.delayed_retry_seconds = delayed_retry_seconds

    async def publish(self, target: MediaTarget | ReplyTarget) -> DeliveryResult:
        """Deliver `target`, returning the first success or an aggregate failure."""
        label = self._label(target)

        try:
            delivered_id = await self._direct(target)
            logger.info(f"{label}: delivered directly ({delivered_id})")
            return DeliverySuccess(id=delivered_id, method="direct")
        except PlatformError as e:
            first_error = e
            logger.warning(f"{label}: direct attempt failed ({type(e).__name__}): {e}")

        if isinstance(first_error, MediaFormatError):
            strategies = self._format_strategies(target)
        elif isinstance(first_error, PlatformPermissionError):
            strategies = self._permission_strategies(target)
        elif isinstance(first_error, TransientFetchError):
            strategies = [
                (f"url_retry_{i}", delay, self._direct)
                for i, delay in enumerate(self.url_retry_delays, start=1)
            ]
        else:
            strategies = [("delayed_retry", self.delayed_retry_seconds, self._direct)]

        last_error = first_error
        for method, wait, attempt in strategies:
            if wait:
                await self._sleep(wait)
            try:
                delivered_id = await attempt(target)
                logger.info(f"{label}: delivered via {method} ({delivered_id})")
                return DeliverySuccess(id=delivered_id, method=method)
            except PlatformError as e:
                last_error = e
                logger.warning(f"{label}: {method} failed ({type(e).__name__}): {e}")

        failure = DeliveryFailure(
            reason=(
                f"Delivery failed after all strategies. "
                f"Original: {first_error}, Final: {last_error}"
            ),
            first_error=first_error,
            last_error=last_error,
        )
        logger.error(f"{label}: {failure.reason}")
        return failure

    async def publish_or_raise(self, target: MediaTarget | ReplyTarget) -> DeliverySuccess:
        """Like publish(), but raise DeliveryExhausted on failure."""
        result = await self.publish(target)
        if isinstance(result, DeliveryFailure):
            raise DeliveryExhausted(result)
        return result

    # =========================================================================
    # Strategies
    # =========================================================================

    async def _direct(self, target: MediaTarget | ReplyTarget) -> str:
        if isinstance(target, MediaTarget):
            return await self.client.publish_media(
                target.account_id,
                target.content_type,
                target.media_url,
                target.caption,
                target.access_token,
            )
        if target.kind == "comment":
            return await self.client.reply_to_comment(
                target.object_id, target.text, target.access_token
            )
        return await self.client.send_direct_message(
            target.account_id, target.object_id, target.text, target.access_token
        )

    def _format_strategies(self, target: MediaTarget | ReplyTarget) -> list:
        if isinstance(target, ReplyTarget):
            async def plain_text(t: ReplyTarget) -> str:
                cleaned = sanitize_text(t.text)
                if not cleaned:
                    raise MediaFormatError("Reply is empty after sanitizing")
                return await self._direct(ReplyTarget(
                    kind=t.kind,
                    account_id=t.account_id,
                    access_token=t.access_token,
                    object_id=t.object_id,
                    text=cleaned,
                ))
            return [("compression", 0, plain_text)]

        if target.content_type in ("video", "reel") and self.transcoder is not None:
            async def compressed(t: MediaTarget) -> str:
                new_url = await self.transcoder(t.media_url)
                return await self.client.publish_media(
                    t.account_id, t.content_type, new_url, t.caption, t.access_token
                )
            return [("compression", 0, compressed)]

        return []

    def _permission_strategies(self, target: MediaTarget | ReplyTarget) -> list:
        if isinstance(target, MediaTarget):
            if target.content_type not in ("video", "reel"):
                return []

            async def as_photo(t: MediaTarget) -> str:
                return await self.client.publish_media(
                    t.account_id, "photo", t.media_url, t.caption, t.access_token
                )
            return [("photo_fallback", 0, as_photo)]

        if target.kind == "comment":
            async def private_reply(t: ReplyTarget) -> str:
                return await self.client.send_private_reply(
                    t.account_id, t.object_id, t.text, t.access_token
                )
            return [("private_reply", 0, private_reply)]

        return []

    @staticmethod
    def _label(target: MediaTarget | ReplyTarget) -> str:
        if isinstance(target, MediaTarget):
            return f"[{target.content_type} {target.account_id}]"
        return f"[{target.kind} reply {target.object_id}]"
