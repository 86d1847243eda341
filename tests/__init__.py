"""
Datastore SDK Test Suite.

This package contains:
- unit/: Unit tests (mocked transports, no network)
- integration/: Integration tests (Dataset over the in-memory datastore)
"""
