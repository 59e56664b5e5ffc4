"""
Real Functionality Tests Package.

This package contains tests that verify actual component behavior,
not just mock interactions. Tests focus on:
- SQL queries against an in-memory SQLite store
- Expiry and retention arithmetic with a controllable clock
- Retry and model-chain behavior of the LLM client

Mock vs Real Strategy:
- Mock: External HTTP (LLM endpoint, Graph API)
- Real: Store, memory, analysis parsing, worker loop
"""
