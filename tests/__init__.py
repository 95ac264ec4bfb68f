"""
sqlgraph test suite.

This package contains:
- unit/: Unit tests (no database, or an empty in-memory one)
- integration/: Integration tests against in-memory SQLite seeded with
  the shop schema of tests/fixtures.py
"""
