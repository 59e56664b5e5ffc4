"""
Runtime State - Per-process mutable state for the auto-responder.

Everything the responder remembers between webhooks (without touching the
database) lives here, in one object that is injected rather than imported:

    ┌─────────────────────────────────────────────────────────────┐
    │                       RUNTIME STATE                         │
    ├─────────────────────────────────────────────────────────────┤
    │  deduplicator    recent event keys (bounded)                │
    │  governor        daily count, last reply time, per-user     │
    │  reply_history   recently sent reply strings (bounded)      │
    │  rule_counter    per-rule trigger count for today           │
    └─────────────────────────────────────────────────────────────┘

Daily counters compare the stored date with `today()` on every access and
reset themselves when the calendar date changes. `today` is injectable so
tests can move to the next day without patching the clock.

The state is process-local. Running several instances behind a load
balancer means each one enforces its own caps; a shared counter store would
replace this object behind the same interface.
"""

import logging
from collections import OrderedDict
from datetime import date, datetime
from typing import Callable

from src.deduplicator import DEFAULT_CAPACITY, EventDeduplicator

logger = logging.getLogger(__name__)

DEFAULT_REPLY_HISTORY = 100


class RuleTriggerCounter:
    """Per-rule trigger counts for the current calendar day."""

    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today = today
        self._day = today()
        self._counts: dict[str, int] = {}

    def _roll(self) -> None:
        current = self._today()
        if current != self._day:
            logger.info(f"Rule counters reset for {current} ({len(self._counts)} rules)")
            self._day = current
            self._counts = {}

    def count(self, rule_id: str) -> int:
        self._roll()
        return self._counts.get(rule_id, 0)

    def record(self, rule_id: str) -> int:
        """Increment and return today's count for a rule."""
        self._roll()
        self._counts[rule_id] = self._counts.get(rule_id, 0) + 1
        return self._counts[rule_id]


class GovernorState:
    """Counters the stealth governor reads and updates."""

    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today = today
        self.day = today()
        self.daily_count = 0
        self.last_response_at: datetime | None = None
        self.participant_counts: dict[str, int] = {}

    def roll(self) -> None:
        """Reset daily counters when the date has changed."""
        current = self._today()
        if current != self.day:
            logger.info(
                f"Governor daily reset: {self.daily_count} replies on {self.day}"
            )
            self.day = current
            self.daily_count = 0
            self.participant_counts = {}

    def participant_count(self, participant_id: str) -> int:
        return self.participant_counts.get(participant_id, 0)

    def record_response(self, participant_id: str, at: datetime) -> None:
        self.daily_count += 1
        self.last_response_at = at
        self.participant_counts[participant_id] = self.participant_count(participant_id) + 1


class ReplyHistory:
    """Bounded set of recently sent reply strings."""

    def __init__(self, size: int = DEFAULT_REPLY_HISTORY) -> None:
        self.size = size
        self._replies: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, text: str) -> bool:
        return self._key(text) in self._replies

    def __len__(self) -> int:
        return len(self._replies)

    def recency(self, text: str) -> int:
        """Position in the history, higher is newer. -1 if absent."""
        key = self._key(text)
        for index, existing in enumerate(reversed(self._replies)):
            if existing == key:
                return len(self._replies) - 1 - index
        return -1

    def add(self, text: str) -> None:
        key = self._key(text)
        self._replies.pop(key, None)
        self._replies[key] = None
        while len(self._replies) > self.size:
            self._replies.popitem(last=False)

    @staticmethod
    def _key(text: str) -> str:
        return text.strip()


class RuntimeState:
    """Container injected into the responder."""

    def __init__(
        self,
        dedup_capacity: int = DEFAULT_CAPACITY,
        reply_history_size: int = DEFAULT_REPLY_HISTORY,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.deduplicator = EventDeduplicator(capacity=dedup_capacity)
        self.governor = GovernorState(today=today)
        self.reply_history = ReplyHistory(size=reply_history_size)
        self.rule_counter = RuleTriggerCounter(today=today)

    @classmethod
    def from_settings(cls, settings) -> "RuntimeState":
        return cls(
            dedup_capacity=settings.dedup_capacity,
            reply_history_size=settings.reply_history_size,
        )

    def get_status(self) -> dict:
        return {
            "dedup_keys": len(self.deduplicator),
            "replies_today": self.governor.daily_count,
            "recent_replies": len(self.reply_history),
        }
