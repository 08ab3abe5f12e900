"""Reconciliation engine: fetch, diff, create, update and delete for one binding.

A run converges the target calendar toward the filtered, transformed state
of the source calendar:

1. Load the binding; a missing or disabled binding fails without remote contact.
2. Check both credentials before any remote call.
3. Open provider handles for both sides.
4. Fetch source events inside the sync window and tag them with the binding id.
5. Drop copies (events carrying correlation metadata); they are never sources.
6. Drop originals matching an exclusion rule.
7. Create or update the copy of each remaining original (best effort per event).
8. Delete copies whose original is gone or no longer qualifies.
9. Record sync stats on the binding and write both credentials back.

Steps 3–8 run strictly in sequence and every remote call goes through the
:class:`~calsync.sync.retry.RetryExecutor`.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import TypeVar

from calsync.core.logging import binding_context
from calsync.core.metrics import SyncMetrics
from calsync.core.telemetry import sync_span
from calsync.sync.credentials import CredentialGuard
from calsync.sync.errors import AuthenticationError, ConfigurationError, PersistenceError
from calsync.sync.models import (
    DEFAULT_PAST_DAYS,
    CalendarBinding,
    CalendarEvent,
    CalendarsSyncResult,
    Credential,
    SyncResult,
    SyncWindow,
)
from calsync.sync.repositories import (
    CalendarBindingRepository,
    CalendarEventRepository,
    CalendarEventRepositoryFactory,
    CredentialRepository,
    UnitOfWork,
)
from calsync.sync.retry import RetryExecutor
from calsync.sync.transform import changed_fields, should_sync, transform

logger = logging.getLogger(__name__)

T = TypeVar("T")

COPY_EXTERNAL_ID_PREFIX = "copy_"

# Runs one binding and returns its result, or None when the run was declined.
BindingRunner = Callable[[str], Awaitable[SyncResult | None]]


class _EventOutcome(StrEnum):
    created = "created"
    updated = "updated"
    unchanged = "unchanged"


class ReconciliationEngine:
    """Runs reconciliation for bindings loaded from the binding repository.

    Parameters
    ----------
    bindings, credentials, event_repositories, unit_of_work:
        Collaborators implementing :mod:`calsync.sync.repositories`.
    retry:
        Executor wrapping every remote call.  Defaults to the standard policy.
    clock:
        Returns the current UTC time.  Injected by tests.
    past_days:
        How far back the source window reaches.
    metrics:
        Optional metrics wrapper.
    """

    def __init__(
        self,
        *,
        bindings: CalendarBindingRepository,
        credentials: CredentialRepository,
        event_repositories: CalendarEventRepositoryFactory,
        unit_of_work: UnitOfWork,
        retry: RetryExecutor | None = None,
        clock: Callable[[], datetime] | None = None,
        past_days: int = DEFAULT_PAST_DAYS,
        metrics: SyncMetrics | None = None,
    ) -> None:
        self._bindings = bindings
        self._event_repositories = event_repositories
        self._unit_of_work = unit_of_work
        self._metrics = metrics or SyncMetrics()
        self._retry = retry or RetryExecutor(metrics=self._metrics)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._past_days = past_days
        self._credentials = CredentialGuard(credentials, clock=self._clock)

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def sync_all(self, runner: BindingRunner | None = None) -> CalendarsSyncResult:
        """Sync every enabled binding in turn.

        *runner* replaces :meth:`sync_binding` for each binding; the
        supervisor passes its guarded entry point here.  A runner returning
        None (declined) counts the binding as skipped.
        """
        logger.info("Starting synchronization of all enabled bindings")
        bindings = await self._bindings.get_enabled()
        if not bindings:
            logger.warning("No enabled calendar bindings found for synchronization")
            return CalendarsSyncResult(success=True)

        run = runner or self.sync_binding
        successful = failed = skipped = copied = 0
        errors: list[str] = []

        for binding in bindings:
            try:
                result = await run(binding.id)
            except Exception as exc:
                failed += 1
                errors.append(f"Binding {binding.name}: {exc}")
                logger.error("Error syncing binding %s", binding.id, exc_info=True)
                continue

            if result is None:
                skipped += 1
            elif result.success:
                successful += 1
                copied += result.items_synced
            else:
                failed += 1
                errors.append(f"Binding {binding.name}: {result.error}")

        logger.info(
            "Synchronization completed. Total: %d, Successful: %d, Failed: %d, "
            "Skipped: %d, Events copied: %d",
            len(bindings),
            successful,
            failed,
            skipped,
            copied,
        )
        return CalendarsSyncResult(
            success=failed == 0,
            processed=len(bindings),
            successful=successful,
            failed=failed,
            skipped=skipped,
            copied=copied,
            errors=errors,
        )

    async def sync_binding(self, binding_id: str, *, trigger: str = "manual") -> SyncResult:
        """Reconcile one binding and commit its state.

        Returns a structured result for every run-level failure.  Only a
        failed commit escapes, as :class:`PersistenceError`.
        """
        with binding_context(binding_id), sync_span(
            "sync_binding", binding_id=binding_id, trigger=trigger
        ) as span:
            started = time.monotonic()
            logger.info("Starting synchronization for binding %s (trigger=%s)", binding_id, trigger)

            binding = await self._bindings.get_by_id(binding_id)
            try:
                binding = self._require_enabled(binding_id, binding)
            except ConfigurationError as exc:
                logger.warning("%s", exc)
                span.set_attribute("calsync.success", False)
                return SyncResult.failure(str(exc))

            result = await self._sync(binding)

            try:
                await self._unit_of_work.save_changes()
            except Exception as exc:
                logger.error("Failed to save changes after syncing binding %s", binding_id)
                raise PersistenceError(
                    f"Failed to save changes for binding {binding.name}: {exc}"
                ) from exc

            duration_ms = (time.monotonic() - started) * 1000
            self._metrics.record_run(
                binding_id,
                success=result.success,
                items=result.items_synced,
                duration_ms=duration_ms,
            )
            span.set_attribute("calsync.success", result.success)
            span.set_attribute("calsync.items_synced", result.items_synced)
            return result

    # ------------------------------------------------------------------
    # Run phases
    # ------------------------------------------------------------------

    @staticmethod
    def _require_enabled(binding_id: str, binding: CalendarBinding | None) -> CalendarBinding:
        if binding is None:
            raise ConfigurationError(f"Calendar binding {binding_id} not found")
        if not binding.is_enabled:
            raise ConfigurationError(f"Calendar binding {binding.name} is disabled")
        return binding

    async def _sync(self, binding: CalendarBinding) -> SyncResult:
        source = await self._credentials.resolve(binding.source_credential_id)
        target = await self._credentials.resolve(binding.target_credential_id)

        async with self._credentials.persist_on_exit(source, target):
            try:
                source = self._credentials.ensure_usable(source, role="source", binding=binding)
                target = self._credentials.ensure_usable(target, role="target", binding=binding)
                result = await self._reconcile(binding, source, target)
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                logger.error("Error syncing binding %s: %s", binding.id, message, exc_info=True)
                binding.record_failed_sync(message, at=self._clock())
                await self._record_stats(binding)
                return SyncResult.failure(message)

            binding.record_successful_sync(result.eligible, at=self._clock())
            await self._record_stats(binding)
            logger.info(
                "Synced binding %s: %d eligible, %d created, %d updated, %d deleted, %d failed",
                binding.name,
                result.eligible,
                result.created,
                result.updated,
                result.deleted,
                result.failed,
            )
            return result

    async def _record_stats(self, binding: CalendarBinding) -> None:
        try:
            await self._bindings.update(binding)
        except Exception:
            logger.error("Failed to record sync stats for binding %s", binding.id, exc_info=True)

    async def _reconcile(
        self,
        binding: CalendarBinding,
        source: Credential,
        target: Credential,
    ) -> SyncResult:
        config = binding.configuration
        source_repo = await self._open(source, role="source")
        target_repo = await self._open(target, role="target")

        window = SyncWindow.around(
            self._clock(),
            past_days=self._past_days,
            forward_days=config.sync_days_forward,
        )
        fetched = await self._remote(
            source,
            lambda: source_repo.get_all(
                calendar_id=binding.source_calendar_external_id, window=window
            ),
            "fetch source events",
        )
        fetched = [event.with_binding(binding.id) for event in fetched]
        originals = [event for event in fetched if not event.is_copy]
        eligible = [event for event in originals if should_sync(event, config)]
        logger.info(
            "Found %d events in source calendar of binding %s, %d original, %d eligible",
            len(fetched),
            binding.name,
            len(originals),
            len(eligible),
        )

        created = updated = failed = 0
        for event in eligible:
            try:
                outcome = await self._apply(binding, event, target_repo, target)
            except AuthenticationError:
                raise
            except Exception:
                failed += 1
                logger.error(
                    "Error syncing event %s for binding %s",
                    event.external_id,
                    binding.name,
                    exc_info=True,
                )
                continue
            if outcome is _EventOutcome.created:
                created += 1
            elif outcome is _EventOutcome.updated:
                updated += 1

        deleted, delete_failures = await self._delete_orphans(
            binding,
            {event.external_id for event in eligible},
            target_repo,
            target,
        )
        return SyncResult.ok(
            created=created,
            updated=updated,
            deleted=deleted,
            failed=failed + delete_failures,
            eligible=len(eligible),
        )

    async def _open(self, credential: Credential, *, role: str) -> CalendarEventRepository:
        repository = self._event_repositories.create(credential)
        await self._remote(credential, repository.init, f"initialize {role} calendar")
        return repository

    async def _apply(
        self,
        binding: CalendarBinding,
        event: CalendarEvent,
        target_repo: CalendarEventRepository,
        target: Credential,
    ) -> _EventOutcome:
        calendar_id = binding.target_calendar_external_id
        existing = await self._remote(
            target,
            lambda: target_repo.find_copy(
                original_external_id=event.external_id,
                binding_id=binding.id,
                calendar_id=calendar_id,
            ),
            "find copied event",
        )

        if existing is not None:
            desired = transform(event, binding, existing.external_id).model_copy(
                update={"id": existing.id}
            )
            changes = changed_fields(desired, existing)
            if not changes:
                logger.debug("Event %s unchanged, skipping", event.external_id)
                return _EventOutcome.unchanged
            await self._remote(
                target,
                lambda: target_repo.update(desired, calendar_id=calendar_id),
                "update copied event",
            )
            logger.debug("Updated copy of %s (changed: %s)", event.external_id, ", ".join(changes))
            return _EventOutcome.updated

        copy = transform(event, binding, f"{COPY_EXTERNAL_ID_PREFIX}{uuid.uuid4()}")
        await self._remote(
            target,
            lambda: target_repo.add(copy, calendar_id=calendar_id),
            "create copied event",
        )
        logger.debug("Copied event %s as %s", event.external_id, copy.external_id)
        return _EventOutcome.created

    async def _delete_orphans(
        self,
        binding: CalendarBinding,
        keep: set[str],
        target_repo: CalendarEventRepository,
        target: Credential,
    ) -> tuple[int, int]:
        calendar_id = binding.target_calendar_external_id
        copies = await self._remote(
            target,
            lambda: target_repo.get_copies(binding_id=binding.id, calendar_id=calendar_id),
            "list copied events",
        )
        logger.info(
            "Found %d copied events in target calendar of binding %s", len(copies), binding.name
        )

        deleted = failed = 0
        for copy in copies:
            if copy.original_event_id and copy.original_event_id in keep:
                continue
            try:
                removed = await self._remote(
                    target,
                    lambda: target_repo.delete(
                        external_id=copy.external_id, calendar_id=calendar_id
                    ),
                    "delete orphaned event",
                )
            except AuthenticationError:
                raise
            except Exception:
                failed += 1
                logger.error(
                    "Error deleting event %s for binding %s",
                    copy.external_id,
                    binding.name,
                    exc_info=True,
                )
                continue
            if removed:
                deleted += 1
                logger.debug(
                    "Deleted orphaned copy %s (original %s)",
                    copy.external_id,
                    copy.original_event_id,
                )
        return deleted, failed

    async def _remote(
        self,
        credential: Credential,
        operation: Callable[[], Awaitable[T]],
        description: str,
    ) -> T:
        """Run a remote call through the retry executor.

        A provider authentication failure downgrades *credential* before the
        error propagates.
        """
        try:
            return await self._retry.execute(operation, description=description)
        except AuthenticationError as exc:
            self._credentials.mark_invalid(credential, str(exc))
            raise
