"""
Language & Intent Heuristics - Cheap, deterministic text classification.

Used to pick a fallback reply (language x intent) without calling the LLM,
and to spot repeated greetings.

Language:
    hindi     any Devanagari character (U+0900-U+097F)
    hinglish  at least one transliterated Hindi word, matched as a whole word
    english   everything else

Intent (first match wins):
    pricing > location > thanks > appreciation > question > generic
"""

import re

from config.prompts import GREETING_MARKERS

LANGUAGES = ("english", "hindi", "hinglish")
INTENTS = ("pricing", "location", "thanks", "appreciation", "question", "generic")

_DEVANAGARI = re.compile(r"[\u0900-\u097F]")
_LATIN_WORD = re.compile(r"[a-z]+")

# Transliterated Hindi that rarely appears as an English word.
# "me", "to", "main" and "bus" are deliberately absent.
HINGLISH_WORDS = frozenset({
    "aap", "aapka", "aapko", "acha", "accha", "achha", "aur", "badhiya",
    "bahut", "batao", "bhai", "bhi", "bohot", "chahiye", "chahie", "dekho",
    "haan", "hai", "hain", "ho", "hoga", "hum", "jaldi", "ji", "ka", "kab",
    "kaha", "kahan", "kaise", "kaisa", "kaisi", "kar", "karo", "karna", "ke",
    "ki", "kitna", "kitne", "kuch", "kya", "kyu", "kyun", "mast", "mujhe",
    "nahi", "nahin", "sab", "sahi", "se", "theek", "thik", "tum", "wala",
    "wali", "yaar", "zabardast",
})

_INTENT_WORDS: dict[str, tuple[str, ...]] = {
    "pricing": (
        "price", "prices", "pricing", "cost", "costs", "rate", "rates", "charges",
        "how much", "kitna", "kitne", "daam", "keemat", "paisa",
    ),
    "location": (
        "where", "location", "address", "shop", "store", "kahan", "kaha",
        "directions", "located",
    ),
    "thanks": (
        "thanks", "thank you", "thankyou", "thx", "ty", "shukriya", "dhanyavad",
        "dhanyawad",
    ),
    "appreciation": (
        "love", "loved", "beautiful", "amazing", "awesome", "great", "nice",
        "wow", "superb", "gorgeous", "cute", "mast", "badhiya", "zabardast",
        "sundar", "lovely",
    ),
    "question": (
        "how", "what", "why", "when", "which", "who", "can", "kya", "kaise",
        "kyun", "kyu", "kab", "kaun",
    ),
}

# Devanagari does not play well with \b, so these are plain substrings
_INTENT_DEVANAGARI: dict[str, tuple[str, ...]] = {
    "pricing": ("कीमत", "दाम", "कितना", "कितने", "रेट"),
    "location": ("कहाँ", "कहां", "पता", "लोकेशन"),
    "thanks": ("धन्यवाद", "शुक्रिया"),
    "appreciation": ("सुंदर", "बढ़िया", "शानदार", "प्यार"),
    "question": ("क्या", "कैसे", "क्यों", "कब", "कौन"),
}

_APPRECIATION_EMOJI = ("😍", "❤", "🔥", "👏", "💯", "😘", "🥰")

_INTENT_PATTERNS = {
    intent: re.compile(r"\b(?:" + "|".join(re.escape(w) for w in words) + r")\b")
    for intent, words in _INTENT_WORDS.items()
}

_GREETING = re.compile(
    r"^\W*(?:" + "|".join(re.escape(m) for m in GREETING_MARKERS) + r")\b",
    re.IGNORECASE,
)


def detect_language(text: str) -> str:
    """Return "hindi", "hinglish" or "english"."""
    if _DEVANAGARI.search(text):
        return "hindi"
    words = set(_LATIN_WORD.findall(text.lower()))
    if words & HINGLISH_WORDS:
        return "hinglish"
    return "english"


def detect_intent(text: str) -> str:
    """Classify a message into one of INTENTS."""
    lowered = text.lower()

    for intent in INTENTS[:-1]:
        pattern = _INTENT_PATTERNS.get(intent)
        if pattern is not None and pattern.search(lowered):
            return intent
        if any(word in text for word in _INTENT_DEVANAGARI.get(intent, ())):
            return intent
        if intent == "appreciation" and any(e in text for e in _APPRECIATION_EMOJI):
            return intent
        if intent == "question" and "?" in text:
            return intent

    return "generic"


def is_greeting(text: str) -> bool:
    """True if the text opens with a greeting marker (hi, hello, namaste...)."""
    return bool(_GREETING.match(text or ""))


def mentions_pricing(text: str) -> bool:
    lowered = text.lower()
    return bool(_INTENT_PATTERNS["pricing"].search(lowered)) or any(
        word in text for word in _INTENT_DEVANAGARI["pricing"]
    )
