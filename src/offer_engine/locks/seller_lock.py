"""Per-seller mutual exclusion for inventory check-then-act sequences.

Each :class:`SellerKey` maps to its own ``asyncio.Lock``.  Individual and
organizational sellers live in separate lock domains.  Locks are created on
first use and dropped again once no coroutine holds or waits for them, so
the table only ever contains sellers with in-flight work.

``asyncio.Lock`` wakes waiters in arrival order, which makes each key
FIFO-fair.  Locks are not reentrant: acquiring the same key twice from one
task deadlocks until the acquisition timeout fires.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TypeVar

import structlog

from offer_engine.domain.errors import LockTimeoutError
from offer_engine.domain.models import SellerKey
from offer_engine.domain.types import SellerKind
from offer_engine.observability.metrics import LOCK_WAIT_SECONDS

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_ACQUIRE_TIMEOUT = 30.0


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # Holders plus waiters; the entry is dropped when this reaches zero.
    users: int = 0


class SellerLockManager:
    """Keyed async mutex table, one domain per :class:`SellerKind`.

    Construct one per engine (or per test); there is no module-level
    instance.

    Args:
        acquire_timeout: Seconds to wait for a lock before raising
            :class:`LockTimeoutError`.  ``None`` waits forever.
    """

    def __init__(self, acquire_timeout: float | None = DEFAULT_ACQUIRE_TIMEOUT) -> None:
        self._acquire_timeout = acquire_timeout
        self._domains: dict[SellerKind, dict[str, _LockEntry]] = {kind: {} for kind in SellerKind}

    @property
    def acquire_timeout(self) -> float | None:
        return self._acquire_timeout

    def __len__(self) -> int:
        """Number of live lock entries across both domains."""
        return sum(len(domain) for domain in self._domains.values())

    def is_locked(self, key: SellerKey) -> bool:
        entry = self._domains[key.kind].get(key.id)
        return entry is not None and entry.lock.locked()

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def _checkout(self, key: SellerKey) -> _LockEntry:
        domain = self._domains[key.kind]
        entry = domain.get(key.id)
        if entry is None:
            entry = _LockEntry()
            domain[key.id] = entry
        entry.users += 1
        return entry

    def _checkin(self, key: SellerKey, entry: _LockEntry) -> None:
        entry.users -= 1
        if entry.users == 0:
            domain = self._domains[key.kind]
            if domain.get(key.id) is entry:
                del domain[key.id]

    async def _acquire(self, key: SellerKey, entry: _LockEntry) -> None:
        started = time.perf_counter()
        if self._acquire_timeout is None:
            await entry.lock.acquire()
        else:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=self._acquire_timeout)
            except TimeoutError:
                logger.error(
                    "seller_lock_timeout",
                    seller=str(key),
                    timeout=self._acquire_timeout,
                )
                raise LockTimeoutError(key, self._acquire_timeout) from None
        waited = time.perf_counter() - started
        LOCK_WAIT_SECONDS.labels(kind=key.kind.value).observe(waited)
        logger.debug("seller_lock_acquired", seller=str(key), waited=round(waited, 6))

    @asynccontextmanager
    async def hold(self, key: SellerKey) -> AsyncIterator[None]:
        """Hold the lock for *key* for the duration of the ``async with`` block.

        Raises:
            LockTimeoutError: If the lock is not acquired within the timeout.
        """
        entry = self._checkout(key)
        try:
            await self._acquire(key, entry)
            try:
                yield
            finally:
                entry.lock.release()
                logger.debug("seller_lock_released", seller=str(key))
        finally:
            self._checkin(key, entry)

    async def with_lock(self, key: SellerKey, fn: Callable[[], Awaitable[T] | T]) -> T:
        """Run *fn* while holding the lock for *key* and return its result.

        *fn* may be a plain callable or a coroutine function.  The lock is
        released whether *fn* returns or raises.

        Args:
            key: The seller whose listings *fn* reads and then mutates.
            fn: Zero-argument callable forming the critical section.

        Returns:
            Whatever *fn* returned.

        Raises:
            LockTimeoutError: If the lock is not acquired within the timeout.
        """
        async with self.hold(key):
            result = fn()
            if inspect.isawaitable(result):
                return await result
            return result
