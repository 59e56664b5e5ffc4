"""
Integration Tests Package.

This package contains integration tests that drive the responder from
webhook payload to delivered reply with mocked external APIs.

Tests verify:
- End-to-end reply flow and persisted conversation memory
- Duplicate, echo, no-account and no-rule handling
- Degradation when the LLM or the store is failing
"""
