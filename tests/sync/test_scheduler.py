"""Tests for calsync.sync.scheduler.BindingScheduler."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from calsync.sync.errors import PersistenceError
from calsync.sync.models import SyncResult
from calsync.sync.scheduler import BindingScheduler, SchedulerState
from tests.factories import NOW, wait_until

pytestmark = pytest.mark.unit


class _Runner:
    """Guarded-runner double recording calls and replaying scripted outcomes."""

    def __init__(self, binding, *outcomes):
        self.binding = binding
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, binding_id: str, trigger: str):
        self.calls.append((binding_id, trigger))
        outcome = self.outcomes.pop(0) if self.outcomes else SyncResult.ok()
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is not None:
            self.binding.record_successful_sync(0, at=NOW)
        return outcome


@pytest.fixture
def stop_event() -> asyncio.Event:
    return asyncio.Event()


def _scheduler(binding, runner, stop_event, clock, *, loader=None, cooldown=60.0):
    async def load(binding_id):
        return binding

    return BindingScheduler(
        binding,
        run=runner,
        load_binding=loader or load,
        stop_event=stop_event,
        clock=clock,
        failure_cooldown_s=cooldown,
    )


async def _stop(scheduler: BindingScheduler) -> None:
    scheduler.stop()
    await asyncio.wait_for(scheduler.task, timeout=1)


class TestSchedulingLoop:
    async def test_never_synced_binding_runs_immediately(self, binding, stop_event, clock):
        runner = _Runner(binding)
        scheduler = _scheduler(binding, runner, stop_event, clock)
        assert scheduler.state is SchedulerState.idle

        scheduler.start()
        await wait_until(lambda: runner.calls and scheduler.state is SchedulerState.waiting)

        assert runner.calls == [(binding.id, "scheduled")]
        assert scheduler.next_sync_at == datetime(2026, 3, 2, 9, 30, tzinfo=UTC)
        await _stop(scheduler)
        assert scheduler.state is SchedulerState.stopped

    async def test_recently_synced_binding_waits(self, binding, stop_event, clock):
        binding.record_successful_sync(1, at=NOW - timedelta(minutes=5))
        runner = _Runner(binding)
        scheduler = _scheduler(binding, runner, stop_event, clock)

        scheduler.start()
        await wait_until(lambda: scheduler.state is SchedulerState.waiting)
        await asyncio.sleep(0.02)

        assert runner.calls == []
        assert scheduler.next_sync_at == datetime(2026, 3, 2, 9, 25, tzinfo=UTC)
        await _stop(scheduler)

    async def test_off_boundary_sync_waits_one_full_interval(self, binding, stop_event, clock):
        binding.record_successful_sync(1, at=datetime(2026, 3, 2, 8, 59, 50, tzinfo=UTC))
        runner = _Runner(binding)
        scheduler = _scheduler(binding, runner, stop_event, clock)

        scheduler.start()
        await wait_until(lambda: scheduler.state is SchedulerState.waiting)
        await asyncio.sleep(0.02)

        assert runner.calls == []
        assert scheduler.next_sync_at == datetime(2026, 3, 2, 9, 29, 50, tzinfo=UTC)
        await _stop(scheduler)

    async def test_declined_run_skips_cycle(self, binding, stop_event, clock):
        loads: list[str] = []

        async def loader(binding_id):
            loads.append(binding_id)
            return binding

        runner = _Runner(binding, None)
        scheduler = _scheduler(binding, runner, stop_event, clock, loader=loader)

        scheduler.start()
        await wait_until(lambda: runner.calls and scheduler.state is SchedulerState.waiting)

        assert loads == []
        assert scheduler.next_sync_at == datetime(2026, 3, 2, 9, 30, tzinfo=UTC)
        await _stop(scheduler)

    async def test_stops_when_binding_disabled(self, binding, stop_event, clock):
        async def loader(binding_id):
            disabled = binding.model_copy()
            disabled.disable()
            return disabled

        scheduler = _scheduler(binding, _Runner(binding), stop_event, clock, loader=loader)

        await asyncio.wait_for(scheduler.start(), timeout=1)

        assert scheduler.state is SchedulerState.stopped

    async def test_stops_when_binding_removed(self, binding, stop_event, clock):
        async def loader(binding_id):
            return None

        scheduler = _scheduler(binding, _Runner(binding), stop_event, clock, loader=loader)

        await asyncio.wait_for(scheduler.start(), timeout=1)

        assert scheduler.state is SchedulerState.stopped

    async def test_loop_error_cools_down_then_retries(self, binding, stop_event, clock):
        runner = _Runner(binding, PersistenceError("commit failed"), SyncResult.ok())
        scheduler = _scheduler(binding, runner, stop_event, clock, cooldown=0.01)

        scheduler.start()
        await wait_until(lambda: len(runner.calls) == 2)

        await _stop(scheduler)
        assert scheduler.state is SchedulerState.stopped

    async def test_reschedule_wakes_waiting_scheduler(self, binding, stop_event, clock):
        binding.record_successful_sync(1, at=NOW)
        runner = _Runner(binding)
        scheduler = _scheduler(binding, runner, stop_event, clock)

        scheduler.start()
        await wait_until(lambda: scheduler.state is SchedulerState.waiting)
        assert runner.calls == []

        scheduler.reschedule(binding.model_copy(update={"last_sync_at": None}))
        await wait_until(lambda: len(runner.calls) == 1)

        await _stop(scheduler)

    async def test_process_stop_signal_ends_loop(self, binding, stop_event, clock):
        binding.record_successful_sync(1, at=NOW)
        scheduler = _scheduler(binding, _Runner(binding), stop_event, clock)

        task = scheduler.start()
        await wait_until(lambda: scheduler.state is SchedulerState.waiting)
        stop_event.set()
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1)

        assert scheduler.state is SchedulerState.stopped
