"""
Rule Matcher - Select the automation rule that answers an event.

Rules are stored as JSON and have drifted through several shapes over time
(`trigger` vs `triggers`, `action.responses` vs `responses`, camelCase vs
snake_case, `aiMode: "contextual"`). load_rule() normalizes all of them once,
at load time, into AutomationRule with a tagged list of triggers:

    KeywordTrigger      any keyword is a case-insensitive substring
    HashtagTrigger      any "#tag" appears in the text
    MentionTrigger      the event is a MentionEvent
    AlwaysOnAITrigger   matches everything, reply comes from the LLM

Matching Pipeline (per active rule of the right type, in order):
    ┌─────────────────────────────────────────────────────────────┐
    │  1. Schedule gate   (rule timezone, active days/hours)      │
    │  2. Trigger         (any trigger matches)                   │
    │  3. Exclusion       (no exclude-keyword in the text)        │
    │  4. Daily cap       (today's count < max_per_day)           │
    └─────────────────────────────────────────────────────────────┘

Every surviving rule is logged; only the first one produces a reply.

Usage:
    rules = [load_rule(raw) for raw in await db.get_automation_rules(ws_id)]
    result = RuleMatcher(state.rule_counter).match(rules, event)
    if result.selected:
        ...
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.events import CommentEvent, DirectMessageEvent, MentionEvent
from src.runtime_state import RuleTriggerCounter

logger = logging.getLogger(__name__)


# =============================================================================
# Rule Types
# =============================================================================

@dataclass(frozen=True)
class KeywordTrigger:
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class HashtagTrigger:
    hashtags: tuple[str, ...]


@dataclass(frozen=True)
class MentionTrigger:
    pass


@dataclass(frozen=True)
class AlwaysOnAITrigger:
    pass


Trigger = Union[KeywordTrigger, HashtagTrigger, MentionTrigger, AlwaysOnAITrigger]


@dataclass(frozen=True)
class ActiveHours:
    start: time
    end: time

    def contains(self, moment: time) -> bool:
        """Inclusive on both ends. Windows that cross midnight wrap around."""
        if self.start <= self.end:
            return self.start <= moment <= self.end
        return moment >= self.start or moment <= self.end


@dataclass(frozen=True)
class RuleSchedule:
    """When a rule may fire. Days are 0=Sunday ... 6=Saturday."""

    timezone: str = "UTC"
    active_days: frozenset[int] | None = None
    active_hours: ActiveHours | None = None

    def allows(self, moment: datetime) -> bool:
        local = moment.astimezone(_zone(self.timezone))
        if self.active_days is not None:
            # Python weekday() is Monday=0
            sunday_based = (local.weekday() + 1) % 7
            if sunday_based not in self.active_days:
                return False
        if self.active_hours is not None:
            current = local.time().replace(second=0, microsecond=0)
            if not self.active_hours.contains(current):
                return False
        return True


@dataclass(frozen=True)
class RuleConditions:
    time_delay_minutes: float = 0
    max_per_day: int | None = None
    exclude_keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class AutomationRule:
    id: str
    workspace_id: str
    name: str
    type: str  # comment | dm
    triggers: tuple[Trigger, ...] = ()
    responses: tuple[str, ...] = ()
    conditions: RuleConditions = field(default_factory=RuleConditions)
    schedule: RuleSchedule | None = None
    is_active: bool = True
    personality: str | None = None

    @property
    def uses_ai(self) -> bool:
        return any(isinstance(t, AlwaysOnAITrigger) for t in self.triggers)


@dataclass
class MatchResult:
    selected: AutomationRule | None = None
    matched: list[AutomationRule] = field(default_factory=list)


# =============================================================================
# Normalization
# =============================================================================

_TYPE_ALIASES = {
    "comment": "comment",
    "comments": "comment",
    "mention": "comment",
    "mentions": "comment",
    "dm": "dm",
    "dms": "dm",
    "message": "dm",
    "messages": "dm",
}


def _get(raw: dict, *names: str, default: Any = None) -> Any:
    """First present key among camelCase / snake_case spellings."""
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    return default


def _zone(name: str) -> ZoneInfo | timezone:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', using UTC")
        return timezone.utc


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.strip().split(":")[:2]
    return time(int(hours), int(minutes))


def _as_strings(values: Any) -> tuple[str, ...]:
    if isinstance(values, str):
        values = [v for v in values.split(",")]
    return tuple(str(v).strip() for v in (values or []) if str(v).strip())


def _hashtags(values: Any) -> tuple[str, ...]:
    return tuple(tag.lstrip("#") for tag in _as_strings(values) if tag.lstrip("#"))


def _parse_triggers(raw: dict) -> tuple[Trigger, ...]:
    trigger_doc = _get(raw, "triggers", "trigger", default={})
    triggers: list[Trigger] = []

    # Already tagged: [{"type": "keyword", "keywords": [...]}, ...]
    if isinstance(trigger_doc, list):
        for item in trigger_doc:
            if not isinstance(item, dict):
                continue
            kind = str(item.get("type", "")).lower()
            if kind == "keyword":
                triggers.append(KeywordTrigger(_as_strings(item.get("keywords"))))
            elif kind == "hashtag":
                triggers.append(HashtagTrigger(_hashtags(item.get("hashtags"))))
            elif kind == "mention":
                triggers.append(MentionTrigger())
            elif kind in ("always_on_ai", "ai", "contextual"):
                triggers.append(AlwaysOnAITrigger())
        return tuple(triggers)

    if not isinstance(trigger_doc, dict):
        return ()

    ai_mode = _get(trigger_doc, "aiMode", "ai_mode")
    if ai_mode == "contextual" or _get(trigger_doc, "alwaysOnAI", "always_on_ai", default=False):
        triggers.append(AlwaysOnAITrigger())

    keywords = _as_strings(_get(trigger_doc, "keywords", default=[]))
    if keywords:
        triggers.append(KeywordTrigger(keywords))

    hashtags = _hashtags(_get(trigger_doc, "hashtags", default=[]))
    if hashtags:
        triggers.append(HashtagTrigger(hashtags))

    if _get(trigger_doc, "mentions", "mention", default=False):
        triggers.append(MentionTrigger())

    return tuple(triggers)


def _parse_schedule(raw: dict) -> RuleSchedule | None:
    conditions = _get(raw, "conditions", default={}) or {}
    schedule_doc = _get(raw, "schedule") or _get(conditions, "schedule")
    if not schedule_doc:
        return None

    days = _get(schedule_doc, "activeDays", "active_days")
    hours = _get(schedule_doc, "activeHours", "active_hours")
    active_hours = None
    if hours and hours.get("start") and hours.get("end"):
        active_hours = ActiveHours(_parse_hhmm(hours["start"]), _parse_hhmm(hours["end"]))

    return RuleSchedule(
        timezone=_get(schedule_doc, "timezone", "tz", default="UTC"),
        active_days=frozenset(int(d) for d in days) if days is not None else None,
        active_hours=active_hours,
    )


def load_rule(raw: dict) -> AutomationRule:
    """
    Normalize a stored rule document into an AutomationRule.

    Args:
        raw: Rule as stored (any historical shape).

    Returns:
        Normalized rule.

    Raises:
        ValueError: If the rule has no id or an unknown type.
    """
    rule_id = _get(raw, "id", "_id")
    if rule_id is None:
        raise ValueError("Automation rule has no id")

    rule_type = _TYPE_ALIASES.get(str(_get(raw, "type", default="")).lower())
    if rule_type is None:
        raise ValueError(f"Automation rule {rule_id} has unknown type {raw.get('type')!r}")

    action = _get(raw, "action", default={}) or {}
    responses = _get(raw, "responses") or _get(action, "responses", default=[])
    conditions = _get(raw, "conditions", default={}) or {}
    max_per_day = _get(conditions, "maxPerDay", "max_per_day")

    return AutomationRule(
        id=str(rule_id),
        workspace_id=str(_get(raw, "workspaceId", "workspace_id", default="")),
        name=_get(raw, "name", default=""),
        type=rule_type,
        triggers=_parse_triggers(raw),
        responses=_as_strings(responses),
        conditions=RuleConditions(
            time_delay_minutes=float(_get(conditions, "timeDelay", "time_delay", default=0)),
            max_per_day=int(max_per_day) if max_per_day is not None else None,
            exclude_keywords=_as_strings(
                _get(conditions, "excludeKeywords", "exclude_keywords", default=[])
            ),
        ),
        schedule=_parse_schedule(raw),
        is_active=bool(_get(raw, "isActive", "is_active", default=True)),
        personality=_get(raw, "aiPersonality", "ai_personality", "personality"),
    )


def load_rules(raw_rules: list[dict]) -> list[AutomationRule]:
    """Normalize a list of stored rules, skipping broken ones."""
    rules = []
    for raw in raw_rules:
        try:
            rules.append(load_rule(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping malformed automation rule: {e}")
    return rules


# =============================================================================
# Matching
# =============================================================================

def trigger_matches(trigger: Trigger, event: CommentEvent | DirectMessageEvent) -> bool:
    text = event.text.lower()

    if isinstance(trigger, AlwaysOnAITrigger):
        return True
    if isinstance(trigger, KeywordTrigger):
        return any(keyword.lower() in text for keyword in trigger.keywords)
    if isinstance(trigger, HashtagTrigger):
        return any(
            re.search(rf"#{re.escape(tag.lower())}(?!\w)", text)
            for tag in trigger.hashtags
        )
    if isinstance(trigger, MentionTrigger):
        return isinstance(event, MentionEvent)
    return False


class RuleMatcher:
    """Evaluates normalized rules against one event."""

    def __init__(self, counter: RuleTriggerCounter) -> None:
        self.counter = counter

    def match(
        self,
        rules: list[AutomationRule],
        event: CommentEvent | DirectMessageEvent,
        now: datetime | None = None,
    ) -> MatchResult:
        """
        Find every rule that would fire and pick the first.

        Args:
            rules: Normalized rules in priority order.
            event: Inbound comment, mention or DM.
            now: Moment used for the schedule gate. Defaults to the event time.
        """
        moment = now or event.timestamp
        result = MatchResult()

        for rule in rules:
            if not rule.is_active or rule.type != event.rule_type:
                continue
            if rule.schedule is not None and not rule.schedule.allows(moment):
                logger.debug(f"Rule '{rule.name}' outside its schedule")
                continue
            if not any(trigger_matches(t, event) for t in rule.triggers):
                continue
            text = event.text.lower()
            if any(word.lower() in text for word in rule.conditions.exclude_keywords):
                logger.debug(f"Rule '{rule.name}' excluded by keyword")
                continue
            cap = rule.conditions.max_per_day
            if cap is not None and self.counter.count(rule.id) >= cap:
                logger.info(f"Rule '{rule.name}' reached its daily cap ({cap})")
                continue
            result.matched.append(rule)

        if result.matched:
            result.selected = result.matched[0]
            logger.info(
                f"Matched rules for {event.dedup_key}: "
                f"{[r.name or r.id for r in result.matched]} -> using '{result.selected.name}'"
            )
        return result
