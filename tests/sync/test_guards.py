"""Tests for calsync.sync.guards.ExclusiveRunGuards."""

from __future__ import annotations

import asyncio

import pytest

from calsync.sync.guards import ExclusiveRunGuards

pytestmark = pytest.mark.unit


class TestTryAcquire:
    async def test_first_acquire_succeeds_second_declines(self):
        guards = ExclusiveRunGuards()
        assert await guards.try_acquire("b1")
        assert not await guards.try_acquire("b1")
        assert guards.is_running("b1")

    async def test_release_allows_reacquire(self):
        guards = ExclusiveRunGuards()
        await guards.try_acquire("b1")
        guards.release("b1")
        assert not guards.is_running("b1")
        assert await guards.try_acquire("b1")

    async def test_bindings_are_independent(self):
        guards = ExclusiveRunGuards()
        assert await guards.try_acquire("b1")
        assert await guards.try_acquire("b2")
        assert guards.running_count == 2
        assert sorted(guards.running_ids()) == ["b1", "b2"]

    async def test_concurrent_acquire_only_one_wins(self):
        guards = ExclusiveRunGuards()
        results = await asyncio.gather(*(guards.try_acquire("b1") for _ in range(5)))
        assert results.count(True) == 1

    def test_release_of_unheld_guard_is_ignored(self):
        guards = ExclusiveRunGuards()
        guards.release("never-acquired")
        assert guards.running_count == 0


class TestHold:
    async def test_hold_releases_on_exit(self):
        guards = ExclusiveRunGuards()
        async with guards.hold("b1") as acquired:
            assert acquired
            assert guards.is_running("b1")
        assert not guards.is_running("b1")

    async def test_hold_yields_false_when_held(self):
        guards = ExclusiveRunGuards()
        async with guards.hold("b1"):
            async with guards.hold("b1") as acquired:
                assert not acquired
            # The declined holder must not release the outer hold.
            assert guards.is_running("b1")

    async def test_hold_releases_on_error(self):
        guards = ExclusiveRunGuards()
        with pytest.raises(RuntimeError):
            async with guards.hold("b1"):
                raise RuntimeError("boom")
        assert not guards.is_running("b1")


class TestDiscard:
    def test_discard_idle_guard(self):
        guards = ExclusiveRunGuards()
        guards.ensure("b1")
        guards.discard("b1")
        assert "b1" not in guards
        assert len(guards) == 0

    async def test_discard_held_guard_is_deferred(self):
        guards = ExclusiveRunGuards()
        await guards.try_acquire("b1")
        guards.discard("b1")
        assert "b1" in guards

        guards.release("b1")
        assert "b1" not in guards

    async def test_ensure_cancels_pending_discard(self):
        guards = ExclusiveRunGuards()
        await guards.try_acquire("b1")
        guards.discard("b1")
        guards.ensure("b1")
        guards.release("b1")
        assert "b1" in guards

    def test_discard_unknown_is_noop(self):
        ExclusiveRunGuards().discard("missing")

    def test_binding_ids_lists_every_guard(self):
        guards = ExclusiveRunGuards()
        guards.ensure("b1")
        guards.ensure("b2")
        assert sorted(guards.binding_ids()) == ["b1", "b2"]
