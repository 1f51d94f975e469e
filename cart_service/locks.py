# cart_service/locks.py
# Per-key asyncio locks for read-check-write sections, keyed like ("product", "sku-1").
# hold() takes keys in sorted order; idle locks are dropped from the registry.
# Across processes the product row lock (SELECT ... FOR UPDATE) serializes instead.
import asyncio
from contextlib import asynccontextmanager


def product_key(product_id):
    return ("product", str(product_id))


def identity_key(identity):
    return ("identity", str(identity))


def payment_key(gateway_order_id, gateway_payment_id):
    return ("payment", f"{gateway_order_id}|{gateway_payment_id}")


class KeyedLocks:
    def __init__(self):
        self._locks: dict[tuple, asyncio.Lock] = {}
        self._users: dict[tuple, int] = {}

    def __len__(self):
        return len(self._locks)

    def locked(self, key) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, *keys):
        ordered = sorted(set(keys))
        for key in ordered:
            self._users[key] = self._users.get(key, 0) + 1
        held = []
        try:
            for key in ordered:
                lock = self._locks.setdefault(key, asyncio.Lock())
                await lock.acquire()
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                lock.release()
            for key in ordered:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    self._locks.pop(key, None)


resource_locks = KeyedLocks()
