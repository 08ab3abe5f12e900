"""Test support utilities for the calsync package.

In-memory implementations of the collaborator contracts in
:mod:`calsync.sync.repositories`.  Nothing here depends on pytest, so the
helpers can back local experiments as well as the test suite.
"""

from __future__ import annotations

from calsync.testing.memory import (
    InMemoryBindingRepository,
    InMemoryCalendarEventRepository,
    InMemoryCalendarStore,
    InMemoryCredentialRepository,
    InMemoryEventRepositoryFactory,
    InMemoryUnitOfWork,
)

__all__ = [
    "InMemoryBindingRepository",
    "InMemoryCalendarEventRepository",
    "InMemoryCalendarStore",
    "InMemoryCredentialRepository",
    "InMemoryEventRepositoryFactory",
    "InMemoryUnitOfWork",
]
