"""
DocMeta Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (in-memory document store)
- e2e/: End-to-end tests (live MongoDB, DOCMETA_E2E_TESTS=1)
"""
