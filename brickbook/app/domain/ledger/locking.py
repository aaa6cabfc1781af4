"""
Per-customer critical sections for ledger mutations.

One asyncio lock per customer id inside this process; the database row lock
taken by LedgerService covers other processes. Locks for different customers
are independent.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager

from brickbook.app.domain.ledger.errors import ContentionError


class CustomerLockRegistry:
    """
    Hands out one lock per customer, created on demand and dropped once no
    task holds or waits for it.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, customer_id: str, timeout: float):
        """
        Hold the customer's lock for the duration of the block.

        Raises:
            ContentionError: the lock was not acquired within ``timeout`` seconds
        """
        lock = self._locks.setdefault(customer_id, asyncio.Lock())
        self._users[customer_id] += 1
        try:
            try:
                async with asyncio.timeout(timeout):
                    await lock.acquire()
            except TimeoutError:
                raise ContentionError(customer_id, timeout) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[customer_id] -= 1
            if self._users[customer_id] <= 0:
                self._users.pop(customer_id, None)
                self._locks.pop(customer_id, None)

    def is_locked(self, customer_id: str) -> bool:
        lock = self._locks.get(customer_id)
        return lock is not None and lock.locked()


customer_locks = CustomerLockRegistry()
