"""Shared fixtures for the calsync test suite.

Every fixture wires the in-memory collaborators from :mod:`calsync.testing`
around a fixed clock so runs are deterministic.  Object builders live in
``tests/factories.py``.
"""

from __future__ import annotations

import pytest

from calsync.sync.engine import ReconciliationEngine
from calsync.sync.models import CalendarBinding, Credential
from calsync.sync.retry import RetryExecutor, RetryPolicy
from calsync.testing import (
    InMemoryBindingRepository,
    InMemoryCalendarStore,
    InMemoryCredentialRepository,
    InMemoryEventRepositoryFactory,
    InMemoryUnitOfWork,
)
from tests.factories import NOW, make_binding, make_credential


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def store() -> InMemoryCalendarStore:
    return InMemoryCalendarStore()


@pytest.fixture
def source_credential() -> Credential:
    return make_credential("work")


@pytest.fixture
def target_credential() -> Credential:
    return make_credential("personal")


@pytest.fixture
def credential_repo(source_credential, target_credential) -> InMemoryCredentialRepository:
    return InMemoryCredentialRepository(source_credential, target_credential)


@pytest.fixture
def binding(source_credential, target_credential) -> CalendarBinding:
    return make_binding(source_credential, target_credential)


@pytest.fixture
def binding_repo(binding) -> InMemoryBindingRepository:
    return InMemoryBindingRepository(binding)


@pytest.fixture
def unit_of_work() -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def retry(sleeps) -> RetryExecutor:
    """Executor with the default policy minus jitter, recording sleeps instead of sleeping."""

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return RetryExecutor(RetryPolicy(jitter=False), sleep=fake_sleep)


@pytest.fixture
def engine(binding_repo, credential_repo, store, unit_of_work, retry, clock):
    return ReconciliationEngine(
        bindings=binding_repo,
        credentials=credential_repo,
        event_repositories=InMemoryEventRepositoryFactory(store),
        unit_of_work=unit_of_work,
        retry=retry,
        clock=clock,
    )
