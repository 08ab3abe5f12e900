"""BindingScheduler: the timed loop driving one binding.

State machine::

    idle -> waiting(next_sync_at) -> running -> waiting(next_sync_at') -> ... -> stopped

The scheduler never calls the engine directly; it goes through the
supervisor's guarded entry point so a scheduled run and a manual trigger of
the same binding can never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum

from calsync.core.logging import binding_context
from calsync.sync.models import CalendarBinding, SyncResult

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_COOLDOWN_S = 60.0
SCHEDULED_TRIGGER = "scheduled"

# (binding_id, trigger) -> result, or None when the guard was held.
GuardedRunner = Callable[[str, str], Awaitable[SyncResult | None]]
BindingLoader = Callable[[str], Awaitable[CalendarBinding | None]]


class SchedulerState(StrEnum):
    idle = "idle"
    waiting = "waiting"
    running = "running"
    stopped = "stopped"


class BindingScheduler:
    """Sleeps until a binding is due, runs it, and works out the next due time.

    Parameters
    ----------
    binding:
        Snapshot of the binding at scheduling time.
    run:
        Guarded entry point; returns None when the run was declined.
    load_binding:
        Reloads the binding after each run to pick up fresh sync stats.
    stop_event:
        Process-wide stop signal shared by every scheduler.
    clock:
        Returns the current UTC time.
    failure_cooldown_s:
        Pause after an unexpected loop error before trying again.
    """

    def __init__(
        self,
        binding: CalendarBinding,
        *,
        run: GuardedRunner,
        load_binding: BindingLoader,
        stop_event: asyncio.Event,
        clock: Callable[[], datetime] | None = None,
        failure_cooldown_s: float = DEFAULT_FAILURE_COOLDOWN_S,
    ) -> None:
        self._binding = binding
        self._run = run
        self._load_binding = load_binding
        self._stop_event = stop_event
        self._clock = clock or (lambda: datetime.now(UTC))
        self._failure_cooldown_s = failure_cooldown_s
        self._state = SchedulerState.idle
        self._next_sync_at: datetime | None = None
        self._wake = asyncio.Event()
        self._stopped = False
        self._task: asyncio.Task | None = None

    @property
    def binding_id(self) -> str:
        return self._binding.id

    @property
    def binding(self) -> CalendarBinding:
        return self._binding

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def next_sync_at(self) -> datetime | None:
        return self._next_sync_at

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(
                self.run(), name=f"calsync-scheduler-{self.binding_id}"
            )
        return self._task

    def reschedule(self, binding: CalendarBinding | None = None) -> None:
        """Recompute the due time, optionally from an edited binding."""
        if binding is not None:
            self._binding = binding
        self._next_sync_at = self._binding.next_sync_at(self._clock())
        self._wake.set()

    def stop(self) -> None:
        self._stopped = True
        self._wake.set()

    def _should_stop(self) -> bool:
        return self._stopped or self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        if self._next_sync_at is None:
            self._next_sync_at = self._binding.next_sync_at(self._clock())

        with binding_context(self.binding_id):
            logger.info(
                "Scheduler started for binding %s; next sync at %s",
                self._binding.name,
                self._next_sync_at.isoformat(),
            )
            try:
                while not self._should_stop():
                    try:
                        if not await self._tick():
                            break
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        logger.error(
                            "Scheduler loop for binding %s failed; cooling down for %.0fs",
                            self.binding_id,
                            self._failure_cooldown_s,
                            exc_info=True,
                        )
                        self._state = SchedulerState.waiting
                        await self._wait(self._failure_cooldown_s)
            finally:
                self._state = SchedulerState.stopped
                logger.info("Scheduler stopped for binding %s", self.binding_id)

    async def _tick(self) -> bool:
        """Run one wait/run cycle; return False once the binding is gone or disabled."""
        self._state = SchedulerState.waiting
        if not await self._wait_until_due() or self._should_stop():
            return True

        self._state = SchedulerState.running
        result = await self._run(self.binding_id, SCHEDULED_TRIGGER)
        now = self._clock()

        if result is None:
            self._next_sync_at = self._binding.configuration.interval.next_after(now)
            logger.info(
                "Binding %s is already syncing; skipping this cycle until %s",
                self.binding_id,
                self._next_sync_at.isoformat(),
            )
            return True

        binding = await self._load_binding(self.binding_id)
        if binding is None or not binding.is_enabled:
            logger.info("Binding %s was removed or disabled; stopping scheduler", self.binding_id)
            return False

        self._binding = binding
        next_sync_at = binding.next_sync_at(now)
        if next_sync_at <= now:
            next_sync_at = binding.configuration.interval.next_after(now)
        self._next_sync_at = next_sync_at
        logger.debug("Next sync for binding %s at %s", self.binding_id, next_sync_at.isoformat())
        return True

    async def _wait_until_due(self) -> bool:
        """Sleep until due; False when woken early by a reschedule or stop."""
        if self._next_sync_at is None:
            return True
        delay = (self._next_sync_at - self._clock()).total_seconds()
        if delay <= 0:
            return True
        return not await self._wait(delay)

    async def _wait(self, timeout: float) -> bool:
        """Wait up to *timeout* seconds; return True when woken early."""
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=timeout)
        except TimeoutError:
            return False
        self._wake.clear()
        return True
