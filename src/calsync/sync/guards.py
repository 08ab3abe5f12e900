"""Per-binding exclusive-run guards.

Every run of a binding, whether scheduled or manually triggered, must hold
that binding's guard.  Acquisition never waits: a held guard means a run is
already in flight and the new attempt is declined instead of queued.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class ExclusiveRunGuards:
    """Arena of one-permit guards keyed by binding id.

    Guards are created on first use and removed with :meth:`discard` when
    the binding is deleted.  Discarding a held guard is deferred until the
    current holder releases it.
    """

    def __init__(self) -> None:
        self._guards: dict[str, asyncio.Lock] = {}
        self._retired: set[str] = set()

    def ensure(self, binding_id: str) -> asyncio.Lock:
        guard = self._guards.get(binding_id)
        if guard is None:
            guard = asyncio.Lock()
            self._guards[binding_id] = guard
        self._retired.discard(binding_id)
        return guard

    async def try_acquire(self, binding_id: str) -> bool:
        """Acquire the guard for *binding_id* without waiting.

        Returns False when another run holds it.  Nothing ever waits on a
        guard, so acquiring an unlocked one completes without suspending.
        """
        guard = self.ensure(binding_id)
        if guard.locked():
            return False
        await guard.acquire()
        return True

    def release(self, binding_id: str) -> None:
        guard = self._guards.get(binding_id)
        if guard is None or not guard.locked():
            logger.warning("Release of guard for binding %s that is not held", binding_id)
            return
        guard.release()
        if binding_id in self._retired:
            self._retired.discard(binding_id)
            del self._guards[binding_id]
            logger.debug("Discarded guard for removed binding %s", binding_id)

    def is_running(self, binding_id: str) -> bool:
        guard = self._guards.get(binding_id)
        return guard is not None and guard.locked()

    @property
    def running_count(self) -> int:
        return sum(1 for guard in self._guards.values() if guard.locked())

    def running_ids(self) -> list[str]:
        return [binding_id for binding_id, guard in self._guards.items() if guard.locked()]

    def binding_ids(self) -> list[str]:
        return list(self._guards)

    def discard(self, binding_id: str) -> None:
        """Forget the guard of a deleted binding."""
        guard = self._guards.get(binding_id)
        if guard is None:
            return
        if guard.locked():
            self._retired.add(binding_id)
            return
        del self._guards[binding_id]

    def __contains__(self, binding_id: object) -> bool:
        return binding_id in self._guards

    def __len__(self) -> int:
        return len(self._guards)

    @asynccontextmanager
    async def hold(self, binding_id: str) -> AsyncIterator[bool]:
        """Hold the guard for the block; yields False when it was unavailable."""
        acquired = await self.try_acquire(binding_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(binding_id)
