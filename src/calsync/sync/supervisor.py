"""SchedulerSupervisor: owns one BindingScheduler per enabled binding.

Manual triggers and scheduled runs share :meth:`SchedulerSupervisor._run_guarded`,
which holds the binding's exclusive-run guard for the duration of the run.
Different bindings run in parallel; the same binding never does.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from calsync.core.metrics import SyncMetrics
from calsync.sync.engine import ReconciliationEngine
from calsync.sync.guards import ExclusiveRunGuards
from calsync.sync.models import CalendarBinding, CalendarsSyncResult, SyncResult
from calsync.sync.repositories import CalendarBindingRepository
from calsync.sync.scheduler import DEFAULT_FAILURE_COOLDOWN_S, BindingScheduler
from calsync.sync.status import (
    ScheduledBindingStatus,
    StatusFeed,
    SyncStatusKind,
    SyncStatusUpdate,
)

logger = logging.getLogger(__name__)

MANUAL_TRIGGER = "manual"


class TriggerOutcome(StrEnum):
    completed = "completed"
    failed = "failed"
    declined = "declined"


class TriggerResult(BaseModel):
    """Outcome of a manual trigger."""

    model_config = ConfigDict(frozen=True)

    binding_id: str
    outcome: TriggerOutcome
    result: SyncResult | None = None

    @property
    def declined(self) -> bool:
        return self.outcome is TriggerOutcome.declined


class SchedulerSupervisor:
    """Starts, triggers, reschedules and drains binding schedulers."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        bindings: CalendarBindingRepository,
        *,
        guards: ExclusiveRunGuards | None = None,
        status_feed: StatusFeed | None = None,
        clock: Callable[[], datetime] | None = None,
        failure_cooldown_s: float = DEFAULT_FAILURE_COOLDOWN_S,
        metrics: SyncMetrics | None = None,
    ) -> None:
        self._engine = engine
        self._bindings = bindings
        self._guards = guards or ExclusiveRunGuards()
        self._status_feed = status_feed or StatusFeed()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._failure_cooldown_s = failure_cooldown_s
        self._metrics = metrics or SyncMetrics()
        self._schedulers: dict[str, BindingScheduler] = {}
        self._retiring: set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()
        self._started = False
        self._in_flight: set[asyncio.Task] = set()
        self._in_flight_event = asyncio.Event()
        self._in_flight_event.set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def status_feed(self) -> StatusFeed:
        return self._status_feed

    @property
    def guards(self) -> ExclusiveRunGuards:
        return self._guards

    @property
    def is_syncing(self) -> bool:
        """True while any binding is running."""
        return self._guards.running_count > 0

    @property
    def running_count(self) -> int:
        return self._guards.running_count

    @property
    def is_started(self) -> bool:
        return self._started

    def get_scheduled_bindings(self) -> list[ScheduledBindingStatus]:
        statuses = []
        for binding_id, scheduler in self._schedulers.items():
            binding = scheduler.binding
            statuses.append(
                ScheduledBindingStatus(
                    binding_id=binding_id,
                    name=binding.name,
                    state=scheduler.state.value,
                    is_running=self._guards.is_running(binding_id),
                    next_sync_at=scheduler.next_sync_at,
                    last_sync_at=binding.last_sync_at,
                    last_sync_event_count=binding.last_sync_event_count,
                    last_sync_error=binding.last_sync_error,
                )
            )
        return statuses

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start a scheduler for every enabled binding."""
        if self._started:
            logger.warning("Scheduler supervisor already started")
            return
        self._stop_event = asyncio.Event()
        self._started = True

        bindings = await self._bindings.get_enabled()
        for binding in bindings:
            self._start_scheduler(binding)
        logger.info("Scheduler supervisor started with %d binding(s)", len(bindings))

    async def reschedule_all(self) -> None:
        """Reconcile running schedulers with the current set of enabled bindings.

        Called after bindings are added, edited or removed.
        """
        bindings = {binding.id: binding for binding in await self._bindings.get_enabled()}

        for binding_id in self._guards.binding_ids():
            if binding_id not in bindings:
                self._guards.discard(binding_id)

        if not self._started:
            logger.warning("reschedule_all called before start; only guards were pruned")
            return

        for binding_id in list(self._schedulers):
            if binding_id not in bindings:
                self._retire(self._schedulers.pop(binding_id))
                logger.info("Unscheduled binding %s", binding_id)

        for binding_id, binding in bindings.items():
            scheduler = self._schedulers.get(binding_id)
            if scheduler is None or scheduler.task is None or scheduler.task.done():
                self._start_scheduler(binding)
            else:
                scheduler.reschedule(binding)

        logger.info("Rescheduled %d binding(s)", len(bindings))

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop every scheduler and wait up to *timeout* seconds for running syncs.

        Runs still in flight after the timeout are cancelled.
        """
        self._stop_event.set()
        for scheduler in self._schedulers.values():
            scheduler.stop()

        current = asyncio.current_task()
        tasks = {
            scheduler.task
            for scheduler in self._schedulers.values()
            if scheduler.task is not None and not scheduler.task.done()
        }
        tasks.update(task for task in self._retiring if not task.done())
        tasks.update(task for task in self._in_flight if not task.done())
        tasks.discard(current)

        if tasks:
            logger.info(
                "Waiting for %d scheduler task(s) and %d in-flight run(s) (timeout=%.1fs)",
                len(self._schedulers),
                len(self._in_flight),
                timeout,
            )
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error(
                        "Task %s ended with an error during shutdown",
                        task.get_name(),
                        exc_info=task.exception(),
                    )
            if pending:
                logger.warning(
                    "Shutdown timeout after %.1fs; cancelling %d task(s)", timeout, len(pending)
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        self._schedulers.clear()
        self._retiring.clear()
        self._started = False
        logger.info("Scheduler supervisor stopped")

    def _retire(self, scheduler: BindingScheduler) -> None:
        """Stop *scheduler* and keep its task until it finishes so shutdown can collect it."""
        scheduler.stop()
        task = scheduler.task
        if task is not None and not task.done():
            self._retiring.add(task)
            task.add_done_callback(self._retiring.discard)

    def _start_scheduler(self, binding: CalendarBinding) -> BindingScheduler:
        scheduler = BindingScheduler(
            binding,
            run=self._run_guarded,
            load_binding=self._bindings.get_by_id,
            stop_event=self._stop_event,
            clock=self._clock,
            failure_cooldown_s=self._failure_cooldown_s,
        )
        self._schedulers[binding.id] = scheduler
        self._guards.ensure(binding.id)
        scheduler.start()
        return scheduler

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def trigger_binding(self, binding_id: str) -> TriggerResult:
        """Run *binding_id* now unless it is already running.

        A declined trigger returns immediately; it is never queued.
        """
        result = await self._run_guarded(binding_id, MANUAL_TRIGGER)
        if result is None:
            return TriggerResult(binding_id=binding_id, outcome=TriggerOutcome.declined)

        scheduler = self._schedulers.get(binding_id)
        if scheduler is not None:
            binding = await self._bindings.get_by_id(binding_id)
            if binding is not None:
                scheduler.reschedule(binding)

        outcome = TriggerOutcome.completed if result.success else TriggerOutcome.failed
        return TriggerResult(binding_id=binding_id, outcome=outcome, result=result)

    async def trigger_all(self) -> CalendarsSyncResult:
        """Run every enabled binding in turn; bindings already running are skipped."""

        async def run_manual(binding_id: str) -> SyncResult | None:
            return await self._run_guarded(binding_id, MANUAL_TRIGGER)

        return await self._engine.sync_all(runner=run_manual)

    async def _run_guarded(self, binding_id: str, trigger: str) -> SyncResult | None:
        """Run the engine for *binding_id* while holding its guard.

        Returns None without running when the guard is already held.
        """
        if not await self._guards.try_acquire(binding_id):
            logger.info("Binding %s is already syncing; %s run declined", binding_id, trigger)
            self._metrics.record_declined(binding_id, trigger)
            self._publish(binding_id, SyncStatusKind.declined, trigger)
            return None

        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)
            self._in_flight_event.clear()
        self._metrics.active_runs_inc(binding_id)
        self._publish(binding_id, SyncStatusKind.started, trigger)
        try:
            result = await self._engine.sync_binding(binding_id, trigger=trigger)
        except Exception as exc:
            self._publish(binding_id, SyncStatusKind.failed, trigger, error=str(exc))
            raise
        finally:
            self._guards.release(binding_id)
            if binding_id not in self._schedulers:
                self._guards.discard(binding_id)
            self._metrics.active_runs_dec(binding_id)
            if task is not None:
                self._in_flight.discard(task)
            if not self._in_flight:
                self._in_flight_event.set()

        kind = SyncStatusKind.completed if result.success else SyncStatusKind.failed
        self._publish(binding_id, kind, trigger, result=result, error=result.error)
        return result

    def _publish(
        self,
        binding_id: str,
        kind: SyncStatusKind,
        trigger: str,
        *,
        result: SyncResult | None = None,
        error: str | None = None,
    ) -> None:
        self._status_feed.publish(
            SyncStatusUpdate(
                binding_id=binding_id,
                kind=kind,
                trigger=trigger,
                result=result,
                error=error,
                at=self._clock(),
            )
        )

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait until no run is in flight."""
        await asyncio.wait_for(self._in_flight_event.wait(), timeout=timeout)
