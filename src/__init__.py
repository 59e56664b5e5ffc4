"""
Instagram Auto-Reply Engine - Automated replies to comments, mentions and DMs.

Receives Instagram webhook events, picks an automation rule, writes a short
reply with an LLM (or a deterministic fallback) and sends it later, at a
human pace, through a fallback ladder of Graph API calls.

Architecture:
    Two layers around every reply:
    1. Stealth Governor: sampling, caps and humanized delays
    2. Adaptive Delivery: typed platform errors drive the retry strategy

Modules:
    bot: Orchestrator that wires components and processes events
    webhook: FastAPI routes, signature verification
    events: Webhook payload normalization
    rules: Automation rule normalization and matching
    memory: Conversation history and expiring context
    response_generator: LLM replies, length governance, fallbacks
    stealth_governor: Respond-or-skip gate and delay calculation
    publisher: Delivery fallback ladder
    platform_client: Instagram Graph API client
    database: Supabase store (database_sqlite: local fallback)

Entry Point:
    python -m src.bot
"""

__version__ = "0.1.0"
