"""
kvorm Test Suite.

This package contains:
- unit/: Unit tests (schema, stores, capability table, engine parts)
- integration/: Integration tests (client operations over both stores)
"""
