"""Collaborator contracts consumed by the reconciliation core.

Persistence and provider adapters implement these; the core never talks to
a database or a calendar API directly.  In-memory implementations live in
:mod:`calsync.testing`.
"""

from __future__ import annotations

import abc

from calsync.sync.models import CalendarBinding, CalendarEvent, Credential, SyncWindow


class CalendarEventRepository(abc.ABC):
    """Event operations against one account on a remote calendar provider.

    Implementations raise :class:`~calsync.sync.errors.TransientRemoteError`,
    :class:`~calsync.sync.errors.PermanentRemoteError` or
    :class:`~calsync.sync.errors.AuthenticationError` (see
    :func:`~calsync.sync.errors.remote_error`) so callers can classify
    failures without knowing the wire protocol.
    """

    @abc.abstractmethod
    async def init(self) -> None:
        """Authenticate and open the provider session."""

    @abc.abstractmethod
    async def get_all(self, *, calendar_id: str, window: SyncWindow) -> list[CalendarEvent]:
        """Return every event of *calendar_id* inside *window*."""

    @abc.abstractmethod
    async def find_copy(
        self,
        *,
        original_external_id: str,
        binding_id: str,
        calendar_id: str,
    ) -> CalendarEvent | None:
        """Return the copy of *original_external_id* produced by *binding_id*, if any."""

    @abc.abstractmethod
    async def add(self, event: CalendarEvent, *, calendar_id: str) -> None:
        """Create *event* (including its correlation metadata) in *calendar_id*."""

    @abc.abstractmethod
    async def update(self, event: CalendarEvent, *, calendar_id: str) -> None:
        """Overwrite the event identified by ``event.external_id``."""

    @abc.abstractmethod
    async def get_copies(self, *, binding_id: str, calendar_id: str) -> list[CalendarEvent]:
        """Return every event in *calendar_id* tagged with *binding_id*."""

    @abc.abstractmethod
    async def delete(self, *, external_id: str, calendar_id: str) -> bool:
        """Delete an event; return False when nothing was deleted."""


class CalendarEventRepositoryFactory(abc.ABC):
    """Builds a provider handle bound to one credential."""

    @abc.abstractmethod
    def create(self, credential: Credential) -> CalendarEventRepository: ...


class CredentialRepository(abc.ABC):
    @abc.abstractmethod
    async def get_by_id(self, credential_id: str) -> Credential | None: ...

    @abc.abstractmethod
    async def update(self, credential: Credential) -> None: ...


class CalendarBindingRepository(abc.ABC):
    @abc.abstractmethod
    async def get_enabled(self) -> list[CalendarBinding]: ...

    @abc.abstractmethod
    async def get_by_id(self, binding_id: str) -> CalendarBinding | None: ...

    @abc.abstractmethod
    async def update(self, binding: CalendarBinding) -> None: ...


class UnitOfWork(abc.ABC):
    @abc.abstractmethod
    async def save_changes(self) -> None:
        """Commit pending binding and credential writes."""
