"""
Webhook Events - Typed inbound events and payload normalization.

Meta delivers Instagram activity in two shapes inside the same envelope:

    {
        "object": "instagram",
        "entry": [
            {
                "id": "<account id>",
                "time": 1700000000,
                "changes":   [{"field": "comments|mentions|messages", "value": {...}}],
                "messaging": [{"sender": {...}, "recipient": {...}, "message": {...}}]
            }
        ]
    }

normalize_payload() flattens both shapes into a list of typed events:

    CommentEvent        comment on one of our posts
    MentionEvent        comment that @-mentions our account
    DirectMessageEvent  inbound DM
    EchoEvent           anything we sent ourselves (discarded by the caller)

Items missing required fields are skipped with a warning instead of failing
the whole batch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

logger = logging.getLogger(__name__)


def _event_time(raw: Any) -> datetime:
    """Convert a Meta timestamp (seconds or milliseconds) to aware UTC."""
    if isinstance(raw, (int, float)) and raw > 0:
        # Messaging timestamps are in milliseconds
        seconds = raw / 1000 if raw > 10_000_000_000 else raw
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CommentEvent:
    """A comment left on one of the account's media."""

    account_id: str
    comment_id: str
    media_id: str | None
    sender_id: str
    sender_username: str | None
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dedup_key(self) -> str:
        return self.comment_id

    @property
    def external_id(self) -> str:
        return self.comment_id

    @property
    def participant_id(self) -> str:
        return self.sender_id

    @property
    def rule_type(self) -> str:
        return "comment"


@dataclass(frozen=True)
class MentionEvent(CommentEvent):
    """A comment that mentions the account. Replied to like a comment."""


@dataclass(frozen=True)
class DirectMessageEvent:
    """An inbound direct message."""

    account_id: str
    message_id: str
    sender_id: str
    recipient_id: str
    text: str
    sender_username: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dedup_key(self) -> str:
        return f"{self.message_id}_{self.sender_id}_{self.recipient_id}"

    @property
    def external_id(self) -> str:
        return self.message_id

    @property
    def participant_id(self) -> str:
        return self.sender_id

    @property
    def rule_type(self) -> str:
        return "dm"


@dataclass(frozen=True)
class EchoEvent:
    """Something the account sent itself. Never acted on."""

    account_id: str
    external_id: str


WebhookEvent = Union[CommentEvent, MentionEvent, DirectMessageEvent, EchoEvent]


# =============================================================================
# Normalization
# =============================================================================

def normalize_payload(payload: dict) -> list[WebhookEvent]:
    """
    Flatten a webhook payload into typed events.

    Args:
        payload: Parsed JSON body of a POST /webhook request.

    Returns:
        Events in delivery order. May be empty.
    """
    events: list[WebhookEvent] = []

    entries = payload.get("entry") or []
    if not isinstance(entries, list):
        logger.warning("Webhook payload 'entry' is not a list, ignoring")
        return events

    for entry in entries:
        if not isinstance(entry, dict):
            continue
        account_id = str(entry.get("id") or "")
        entry_time = entry.get("time")

        for change in _items(entry, "changes", account_id):
            event = _parse_change(account_id, entry_time, change)
            if event is not None:
                events.append(event)

        for messaging in _items(entry, "messaging", account_id):
            event = _parse_messaging(account_id, messaging)
            if event is not None:
                events.append(event)

    return events


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _items(entry: dict, key: str, account_id: str) -> list[dict]:
    """Return the object items of entry[key], skipping anything else."""
    raw = entry.get(key) or []
    if not isinstance(raw, list):
        logger.warning(f"Webhook entry '{key}' is not a list (account {account_id}), ignoring")
        return []

    items = []
    for item in raw:
        if isinstance(item, dict):
            items.append(item)
        else:
            logger.warning(f"Skipping malformed {key} item (account {account_id})")
    return items


def _parse_change(account_id: str, entry_time: Any, change: dict) -> WebhookEvent | None:
    field_name = change.get("field")
    value = change.get("value") or {}
    if not isinstance(value, dict):
        logger.warning(f"Skipping {field_name} change with non-object value (account {account_id})")
        return None

    if field_name in ("comments", "mentions"):
        return _parse_comment(account_id, entry_time, value, mention=field_name == "mentions")
    if field_name == "messages":
        return _parse_messaging(account_id, value)

    logger.debug(f"Ignoring unsupported webhook field: {field_name}")
    return None


def _parse_comment(
    account_id: str,
    entry_time: Any,
    value: dict,
    mention: bool,
) -> WebhookEvent | None:
    comment_id = value.get("comment_id") if mention else value.get("id")
    comment_id = comment_id or value.get("id")
    sender = _as_dict(value.get("from"))
    sender_id = str(sender.get("id") or "")
    text = value.get("text")
    text = text if isinstance(text, str) else ""

    if not comment_id or not sender_id:
        logger.warning(f"Skipping incomplete comment change (account {account_id})")
        return None

    if account_id and sender_id == account_id:
        return EchoEvent(account_id=account_id, external_id=str(comment_id))

    media = _as_dict(value.get("media"))
    media_id = media.get("id") or value.get("media_id")
    cls = MentionEvent if mention else CommentEvent
    return cls(
        account_id=account_id,
        comment_id=str(comment_id),
        media_id=str(media_id) if media_id else None,
        sender_id=sender_id,
        sender_username=sender.get("username"),
        text=text,
        timestamp=_event_time(entry_time),
    )


def _parse_messaging(account_id: str, messaging: dict) -> WebhookEvent | None:
    sender_id = str(_as_dict(messaging.get("sender")).get("id") or "")
    recipient_id = str(_as_dict(messaging.get("recipient")).get("id") or "")
    message = _as_dict(messaging.get("message"))
    mid = message.get("mid")

    if not sender_id or not mid:
        logger.warning(f"Skipping incomplete messaging item (account {account_id})")
        return None

    if message.get("is_echo") or (account_id and sender_id == account_id):
        return EchoEvent(account_id=account_id, external_id=str(mid))

    text = message.get("text")
    if not text or not isinstance(text, str):
        logger.debug(f"Skipping non-text message {mid}")
        return None

    return DirectMessageEvent(
        account_id=account_id or recipient_id,
        message_id=str(mid),
        sender_id=sender_id,
        recipient_id=recipient_id,
        text=text,
        timestamp=_event_time(messaging.get("timestamp")),
    )
