"""
Per-Account Locks

Checkpoint upserts, deletes and recalculation passes for the same
account must not interleave: two passes reading the same pre-mutation
ledger would each write stale results. Different accounts never share
a lock and run concurrently.

The locks are asyncio locks, so they serialize tasks within one event
loop only. A multi-process deployment needs a lock in the store itself.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID


class AccountLockRegistry:
    """
    Hands out one asyncio.Lock per account id.

    A lock lives only while some task holds or waits for it; the last
    holder to leave drops it from the registry.
    """

    def __init__(self):
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._holders: dict[UUID, int] = {}

    def lock_for(self, account_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        return lock

    def is_locked(self, account_id: UUID) -> bool:
        lock = self._locks.get(account_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, account_id: UUID) -> AsyncIterator[None]:
        """Hold the account's lock for the duration of the block. Not reentrant."""
        lock = self.lock_for(account_id)
        self._holders[account_id] = self._holders.get(account_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[account_id] -= 1
            if not self._holders[account_id]:
                del self._holders[account_id]
                del self._locks[account_id]
