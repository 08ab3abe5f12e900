"""Pre-flight credential checks and post-run token-cache persistence."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from calsync.sync.errors import AuthenticationError
from calsync.sync.models import CalendarBinding, Credential
from calsync.sync.repositories import CredentialRepository

logger = logging.getLogger(__name__)


class CredentialGuard:
    """Gatekeeper for the two credentials a binding run depends on.

    A credential is usable only when its token status is ``valid`` (and not
    past expiry) and its serialized token cache is non-empty.  The check
    runs before any remote call so a dead credential never burns retries.
    """

    def __init__(
        self,
        repository: CredentialRepository,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(UTC))

    def is_usable(self, credential: Credential | None) -> bool:
        if credential is None:
            return False
        return credential.is_token_valid(self._clock()) and credential.has_status_data()

    async def resolve(self, credential_id: str) -> Credential | None:
        return await self._repository.get_by_id(credential_id)

    def ensure_usable(
        self,
        credential: Credential | None,
        *,
        role: str,
        binding: CalendarBinding,
    ) -> Credential:
        """Return *credential* or raise :class:`AuthenticationError`."""
        if credential is None:
            raise AuthenticationError(
                f"{role.capitalize()} credential not found for binding {binding.name}"
            )
        if not self.is_usable(credential):
            raise AuthenticationError(
                f"Invalid token or missing status data for {role} credential "
                f"in binding {binding.name}"
            )
        return credential

    def mark_invalid(self, credential: Credential, reason: str) -> None:
        """Downgrade *credential* after the provider rejected it."""
        logger.warning(
            "Marking credential %s (%s) invalid: %s", credential.id, credential.name, reason
        )
        credential.mark_invalid()

    async def persist(self, *credentials: Credential | None) -> None:
        """Write each credential back; failures are logged, not raised."""
        for credential in credentials:
            if credential is None:
                continue
            try:
                await self._repository.update(credential)
            except Exception:
                logger.error("Failed to persist credential %s", credential.id, exc_info=True)

    @asynccontextmanager
    async def persist_on_exit(self, *credentials: Credential | None) -> AsyncIterator[None]:
        """Persist *credentials* on every exit path of the block.

        The provider's auth layer may refresh its token cache mid-run, even
        when the run ultimately fails, so the write-back happens regardless
        of how the block exits.
        """
        try:
            yield
        finally:
            await self.persist(*credentials)
            logger.debug("Credentials persisted")
