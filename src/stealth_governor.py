"""
Stealth Governor - Decide whether and when to auto-reply.

The account must look like a busy human, not a bot that answers everything.
The governor deliberately ignores most eligible events and spaces the rest
out.

Gate (checked in order, first failure rejects):
    ┌─────────────────────────────────────────────────────────────┐
    │  1. daily_cap        replies today >= cap (15)              │
    │  2. sampling         random draw > sampling rate (0.25)     │
    │  3. min_gap          < 15s since our last reply             │
    │  4. short_message    < 10 chars and a 60% skip draw hits    │
    │  5. participant_cap  this person already got > 2 today      │
    └─────────────────────────────────────────────────────────────┘

On acceptance the counters are updated immediately (so concurrent events
see them) and a delay is computed by src.scheduler. The caller schedules
the send on the delay queue; nothing here sleeps.

The random source and clock are injectable for deterministic tests.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from src.humanize import naturalize
from src.runtime_state import GovernorState
from src.scheduler import calculate_reply_delay, get_delay_description

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GovernorDecision:
    accepted: bool
    reason: str
    delay_seconds: float = 0.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StealthGovernor:
    """Rate gate, delay calculator and text naturalizer."""

    def __init__(
        self,
        state: GovernorState,
        max_daily_responses: int = 15,
        response_sampling_rate: float = 0.25,
        min_response_gap_seconds: float = 15.0,
        short_message_length: int = 10,
        short_message_skip_chance: float = 0.6,
        max_replies_per_participant: int = 2,
        min_delay_seconds: float = 120.0,
        max_delay_seconds: float = 600.0,
        delay_ceiling_seconds: float = 600.0,
        long_delay_chance: float = 0.1,
        naturalize_enabled: bool = True,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.state = state
        self.max_daily_responses = max_daily_responses
        self.response_sampling_rate = response_sampling_rate
        self.min_response_gap_seconds = min_response_gap_seconds
        self.short_message_length = short_message_length
        self.short_message_skip_chance = short_message_skip_chance
        self.max_replies_per_participant = max_replies_per_participant
        self.min_delay_seconds = min_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.delay_ceiling_seconds = delay_ceiling_seconds
        self.long_delay_chance = long_delay_chance
        self.naturalize_enabled = naturalize_enabled
        self.rng = rng or random.Random()
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings,
        state: GovernorState,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "StealthGovernor":
        return cls(
            state=state,
            max_daily_responses=settings.max_daily_responses,
            response_sampling_rate=settings.response_sampling_rate,
            min_response_gap_seconds=settings.min_response_gap_seconds,
            short_message_length=settings.short_message_length,
            short_message_skip_chance=settings.short_message_skip_chance,
            max_replies_per_participant=settings.max_replies_per_participant,
            min_delay_seconds=settings.min_delay_seconds,
            max_delay_seconds=settings.max_delay_seconds,
            delay_ceiling_seconds=settings.delay_ceiling_seconds,
            long_delay_chance=settings.long_delay_chance,
            naturalize_enabled=settings.naturalize_enabled,
            rng=rng,
            clock=clock,
        )

    def should_respond(self, participant_id: str, content: str) -> GovernorDecision:
        """
        Run the gate for one inbound message.

        Args:
            participant_id: Who wrote the message.
            content: Message text.

        Returns:
            GovernorDecision with the rejection reason, or the delay to
            wait before sending.
        """
        self.state.roll()
        now = self._clock()

        if self.state.daily_count >= self.max_daily_responses:
            return self._reject("daily_cap")

        if self.rng.random() > self.response_sampling_rate:
            return self._reject("sampling")

        last = self.state.last_response_at
        if last is not None and (now - last).total_seconds() < self.min_response_gap_seconds:
            return self._reject("min_gap")

        if len(content) < self.short_message_length and self.rng.random() < self.short_message_skip_chance:
            return self._reject("short_message")

        if self.state.participant_count(participant_id) > self.max_replies_per_participant:
            return self._reject("participant_cap")

        self.state.record_response(participant_id, now)
        delay = calculate_reply_delay(
            len(content),
            self.rng,
            min_delay=self.min_delay_seconds,
            max_delay=self.max_delay_seconds,
            ceiling=self.delay_ceiling_seconds,
            long_delay_chance=self.long_delay_chance,
        )
        logger.info(
            f"Governor accepted reply to {participant_id} "
            f"({self.state.daily_count}/{self.max_daily_responses} today), "
            f"sending {get_delay_description(delay)}"
        )
        return GovernorDecision(accepted=True, reason="accepted", delay_seconds=delay)

    def naturalize(self, text: str) -> str:
        if not self.naturalize_enabled:
            return text
        return naturalize(text, self.rng)

    def _reject(self, reason: str) -> GovernorDecision:
        logger.debug(f"Governor skipped reply: {reason}")
        return GovernorDecision(accepted=False, reason=reason)
