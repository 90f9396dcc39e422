"""Per-product serialization of stock checks and inserts."""
from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator, Iterable
from contextlib import AsyncExitStack, asynccontextmanager


class StockLockRegistry:
    """Hands out one :class:`asyncio.Lock` per product id.

    Holding the lock across "read derived stock, insert movements, commit"
    closes the check-then-insert race for writers sharing this registry. It
    does nothing for writers in other processes. Entries live only while a
    holder or waiter references the lock, so deleted products leave nothing
    behind.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, product_id: int) -> asyncio.Lock:
        lock = self._locks.get(product_id)
        if lock is None:
            lock = self._locks[product_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, product_ids: Iterable[int]) -> AsyncIterator[None]:
        # Sorted acquisition keeps two multi-product sales from deadlocking.
        async with AsyncExitStack() as stack:
            for product_id in sorted(set(product_ids)):
                await stack.enter_async_context(self.lock_for(product_id))
            yield


@asynccontextmanager
async def no_lock(product_ids: Iterable[int]) -> AsyncIterator[None]:
    yield


__all__ = ["StockLockRegistry", "no_lock"]
