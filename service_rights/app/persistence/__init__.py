"""
Rights persistence backends.

- base: the RightsStore contract (uniqueness, read-time status derivation)
- memory: lock-guarded dictionary store for local runs and tests
- postgres: asyncpg store backed by a unique (application_id, account_id) constraint
"""

from .base import RightsStore
from .memory import InMemoryRightsStore
from .postgres import PostgreSQLRightsStore

__all__ = ["RightsStore", "InMemoryRightsStore", "PostgreSQLRightsStore"]
