"""
Test Suite for the Instagram Auto-Reply Engine.

Structure:
    tests/
    ├── conftest.py          # Shared fixtures and configuration
    ├── unit/                # Component tests with mocked collaborators
    │   ├── test_webhook.py
    │   ├── test_events.py
    │   ├── test_deduplicator.py
    │   ├── test_rules.py
    │   ├── test_language.py
    │   ├── test_response_generator.py
    │   ├── test_stealth_governor.py
    │   ├── test_publisher.py
    │   ├── test_delay_queue.py
    │   ├── test_database.py
    │   └── test_circuit_breaker.py
    ├── integration/         # Webhook → reply flows (mocked external APIs)
    │   └── test_auto_responder.py
    └── real/                # Real functionality tests
        ├── test_memory_real.py
        ├── test_database_real.py
        ├── test_ai_client_real.py
        └── test_background_worker_real.py

Run tests:
    pytest tests/                    # All tests
    pytest tests/unit/               # Unit tests only
    pytest tests/real/               # Real functionality tests only
    pytest tests/integration/        # Integration tests only
    pytest tests/ -v                 # Verbose output
    pytest tests/ -m real            # Tests marked @pytest.mark.real
    pytest tests/ -m "not slow"      # Skip tests that wait on real backoff
"""
