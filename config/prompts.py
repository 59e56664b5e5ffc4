"""
AI prompts and reply templates for the Auto-Reply Engine.

This module centralizes all AI-related prompts and canned replies.
Modify these to adjust the tone, style, and behavior of generated replies.

Structure:
    SYSTEM_PROMPT: Base personality and guidelines for contextual replies
    NO_REPEAT_GREETING: Extra instruction when we already greeted this person
    ANALYSIS_PROMPT: Sentiment/topic extraction for conversation memory
    FALLBACK_REPLIES: Deterministic replies by language and intent
    SHORT_PRICING_REPLIES: Length-governance replacements for pricing talk
"""

# =============================================================================
# System Prompt
# =============================================================================
# Variables: {personality}, {history}, {context}, {message}

SYSTEM_PROMPT = """You are replying on behalf of a small business account on Instagram. You remember previous conversations and respond in context.

Personality: {personality}

Previous conversation:
{history}

Context about this customer:
{context}

Current message: {message}

Instructions:
- Reply in the SAME language as the customer (English, Hindi or Hinglish)
- Keep it very short: one sentence, under 50 characters
- Sound like a real person typing on a phone, not a brand
- Reference earlier parts of the conversation when it helps
- No generic filler like "Great question!" or "Thanks for reaching out!"
- Use emojis sparingly
- Reply with ONLY the message text - no quotes, no explanations
"""

NO_REPEAT_GREETING = (
    "You already greeted this person in your last message. "
    "Do NOT open with a greeting (hi, hello, hey, namaste) again."
)

PERSONALITIES = {
    "friendly": "friendly, warm, and approachable",
    "professional": "professional, polite, and respectful",
    "casual": "casual, relaxed, and conversational",
    "enthusiastic": "enthusiastic, energetic, and excited",
    "helpful": "helpful, supportive, and solution-oriented",
}

DEFAULT_PERSONALITY = "Professional and friendly"

# =============================================================================
# Memory Analysis Prompt
# =============================================================================
# Variables: {content}

ANALYSIS_PROMPT = """Analyze this customer message for sentiment and key topics.

Message: "{content}"

Respond in JSON format only:
{{
  "sentiment": "positive|negative|neutral",
  "topics": ["topic1", "topic2"]
}}

Keep topics short (1-2 words) and relevant to customer service context.
"""

# =============================================================================
# Greeting markers
# =============================================================================
# Used to detect "we already said hi" in the last AI-authored message.

GREETING_MARKERS = (
    "hi",
    "hii",
    "hello",
    "hey",
    "heya",
    "namaste",
    "namaskar",
    "hola",
    "good morning",
    "good evening",
)

# =============================================================================
# Deterministic Fallback Replies
# =============================================================================
# Selected by detected language x detected intent when the LLM is down or its
# reply duplicates something we sent recently. Keep every entry under 50 chars.

FALLBACK_REPLIES = {
    "english": {
        "pricing": [
            "DM me for price details 🙂",
            "sent you the details in DM",
            "check your inbox for pricing",
        ],
        "location": [
            "DM me, I'll share the location",
            "details in your DM 📍",
            "sent you the address in DM",
        ],
        "thanks": [
            "anytime! 🙌",
            "glad you liked it",
            "you're welcome ❤️",
        ],
        "appreciation": [
            "thank you so much ❤️",
            "means a lot 🙏",
            "so glad you liked it!",
        ],
        "question": [
            "good one, DM me and I'll explain",
            "sending you the details in DM",
            "let me DM you about this",
        ],
        "generic": [
            "thanks for stopping by 🙌",
            "appreciate you!",
            "thanks for the love",
        ],
    },
    "hindi": {
        "pricing": [
            "कीमत के लिए DM कीजिए 🙏",
            "डिटेल्स DM में भेज दी हैं",
            "इनबॉक्स चेक कीजिए",
        ],
        "location": [
            "लोकेशन DM में भेज दी है 📍",
            "पता DM में शेयर कर दिया",
            "DM कीजिए, लोकेशन भेजते हैं",
        ],
        "thanks": [
            "आपका स्वागत है 🙏",
            "खुशी हुई 🙂",
            "धन्यवाद आपका भी",
        ],
        "appreciation": [
            "बहुत बहुत धन्यवाद ❤️",
            "आपका प्यार है 🙏",
            "दिल से शुक्रिया",
        ],
        "question": [
            "DM कीजिए, पूरी जानकारी देंगे",
            "जवाब DM में भेज दिया है",
            "इनबॉक्स में बताते हैं",
        ],
        "generic": [
            "धन्यवाद 🙏",
            "आते रहिए 🙂",
            "शुक्रिया जी",
        ],
    },
    "hinglish": {
        "pricing": [
            "price ke liye DM karo 🙂",
            "details DM mein bhej di hai",
            "inbox check karo ji",
        ],
        "location": [
            "location DM kar di hai 📍",
            "address DM mein bhej diya",
            "DM karo, location bhejte hain",
        ],
        "thanks": [
            "koi baat nahi 🙌",
            "khushi hui ji",
            "welcome ji ❤️",
        ],
        "appreciation": [
            "bahut shukriya ❤️",
            "thank you ji 🙏",
            "dil se thanks",
        ],
        "question": [
            "main badhiya, aap batao? 🙂",
            "DM karo, sab bata dete hain",
            "inbox mein batate hain",
        ],
        "generic": [
            "thanks ji 🙏",
            "aate raho 🙂",
            "shukriya yaar",
        ],
    },
}

# =============================================================================
# Length Governance
# =============================================================================
# Long replies that mention pricing collapse to one of these.

SHORT_PRICING_REPLIES = {
    "english": "DM me for details",
    "hindi": "डिटेल्स के लिए DM कीजिए",
    "hinglish": "details ke liye DM karo",
}
