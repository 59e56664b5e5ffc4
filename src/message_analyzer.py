"""
Message Analyzer - Sentiment, topics and intent for conversation memory.

Sentiment and topics come from a small JSON-mode LLM call; intent is a
keyword heuristic. Analysis never raises: if the model is unavailable, the
circuit is open, or the JSON is unusable, the result degrades to
neutral / no topics so the message is still stored.
"""

import json
import logging
import re
from dataclasses import dataclass, field

from config.prompts import ANALYSIS_PROMPT
from src.ai_client import AIClient, LLMError
from src.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

SENTIMENTS = ("positive", "negative", "neutral")
MAX_TOPICS = 3
MAX_TOPIC_LENGTH = 30

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class MessageAnalysis:
    sentiment: str = "neutral"
    topics: list[str] = field(default_factory=list)
    intent: str | None = None


def detect_message_intent(content: str) -> str | None:
    """`question` when the text asks something, `help_request` when it asks for help."""
    if "?" in content:
        return "question"
    if "help" in content.lower():
        return "help_request"
    return None


def parse_analysis(raw: str) -> tuple[str, list[str]]:
    """
    Pull sentiment and topics out of a model response.

    Raises:
        ValueError: If no JSON object can be decoded.
    """
    match = _JSON_OBJECT.search(raw)
    if not match:
        raise ValueError("no JSON object in analysis response")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("analysis response is not an object")

    sentiment = str(data.get("sentiment", "neutral")).lower().strip()
    if sentiment not in SENTIMENTS:
        sentiment = "neutral"

    raw_topics = data.get("topics")
    if not isinstance(raw_topics, list):
        raw_topics = []

    topics = []
    for topic in raw_topics:
        topic = str(topic).strip().lower()[:MAX_TOPIC_LENGTH]
        if topic and topic not in topics:
            topics.append(topic)
    return sentiment, topics[:MAX_TOPICS]


class MessageAnalyzer:
    """LLM-backed sentiment/topic extraction with a safe fallback."""

    def __init__(
        self,
        ai_client: AIClient | None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.ai = ai_client
        self.breaker = breaker or CircuitBreaker("analysis")

    async def analyze(self, content: str) -> MessageAnalysis:
        analysis = MessageAnalysis(intent=detect_message_intent(content))
        if self.ai is None:
            return analysis

        prompt = ANALYSIS_PROMPT.format(content=content)
        try:
            raw = await self.breaker.call(
                self.ai.complete,
                [{"role": "user", "content": prompt}],
                max_tokens=100,
                temperature=0.3,
            )
            analysis.sentiment, analysis.topics = parse_analysis(raw)
        except (LLMError, CircuitOpenError, ValueError, TypeError) as e:
            logger.warning(f"Message analysis failed for '{content[:50]}': {e}")

        return analysis
