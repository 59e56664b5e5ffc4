"""
Humanize - Make generated replies read like someone typing on a phone.

Each transformation is gated by its own random draw, so the same reply
comes out slightly different from run to run:

    lower-case everything          70%
    strip . , ! ?                  80%
    informal abbreviations         40%   (you→u, your→ur, thanks→ty, okay→ok)
    one small typo                 10%   (the→teh or and→nd, first hit only)
"""

import random
import re

LOWERCASE_CHANCE = 0.7
STRIP_PUNCTUATION_CHANCE = 0.8
ABBREVIATION_CHANCE = 0.4
TYPO_CHANCE = 0.1

ABBREVIATIONS = (
    (re.compile(r"\byou\b", re.IGNORECASE), "u"),
    (re.compile(r"\byour\b", re.IGNORECASE), "ur"),
    (re.compile(r"\bthanks\b", re.IGNORECASE), "ty"),
    (re.compile(r"\bokay\b", re.IGNORECASE), "ok"),
)

TYPOS = (
    (re.compile(r"\bthe\b"), "teh"),
    (re.compile(r"\band\b"), "nd"),
)

_PUNCTUATION = re.compile(r"[.,!?]")


def naturalize(text: str, rng: random.Random) -> str:
    """
    Apply casual-typing transformations to a reply.

    Args:
        text: Final reply text.
        rng: Random source. Four draws are consumed, always in the same order.

    Returns:
        Transformed text. Never empty if the input was not.
    """
    lower = rng.random() < LOWERCASE_CHANCE
    strip = rng.random() < STRIP_PUNCTUATION_CHANCE
    abbreviate = rng.random() < ABBREVIATION_CHANCE
    typo = rng.random() < TYPO_CHANCE

    result = text
    if lower:
        result = result.lower()
    if strip:
        stripped = _PUNCTUATION.sub("", result).strip()
        result = stripped or result
    if abbreviate:
        for pattern, replacement in ABBREVIATIONS:
            result = pattern.sub(replacement, result)
    if typo:
        for pattern, replacement in TYPOS:
            if pattern.search(result):
                result = pattern.sub(replacement, result, count=1)
                break
    return result
