# ============================================================================
# ISOLATION LOCKING SERVICE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Infrastructure - Concurrency control
# PURPOSE: Named mutex with timeout and TTL around a whole process() call
# CREATED: 13 OCT 2026
# ============================================================================
"""
Isolation Locking Service

Used only when process() is called with isolate=True. The lock protects
an entire run, never individual tasks.

Semantics:
- acquire blocks (polling) up to timeout seconds, then LockUnavailableError
- a held lock expires after ttl seconds so a crashed holder cannot block forever
- release is unconditional once the body returns or raises

Implementations:
- LeaseLockService: lease row in sequencer.sequencer_locks (multi-host)
- LocalLockService: in-process dict of leases (single process, tests)

Usage:
    lock_service = LeaseLockService(pool)

    async with lock_service.hold("sequencer:process", timeout=60, ttl=600):
        await run_batch()
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, TypeVar

from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from core.contracts import utcnow
from core.errors import LockUnavailableError
from core.models import SequencerLease
from repositories.database import TABLE_LOCKS

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LockService(ABC):
    """
    Named mutex with blocking acquire, TTL expiry and unconditional release.

    Subclasses implement the non-blocking primitives; the polling loop and
    context manager live here.
    """

    def __init__(self, poll_interval: float = 1.0, holder_id: Optional[str] = None):
        """
        Args:
            poll_interval: Seconds between acquisition attempts
            holder_id: Identity of this process (random UUID by default)
        """
        self.poll_interval = poll_interval
        self.holder_id = holder_id or str(uuid.uuid4())

    @abstractmethod
    async def try_acquire(self, name: str, ttl_seconds: int) -> bool:
        """Take the lock if it is free or expired. Never blocks."""

    @abstractmethod
    async def release(self, name: str) -> None:
        """Release the lock if this holder owns it."""

    async def acquire(self, name: str, timeout: float, ttl_seconds: int) -> None:
        """
        Block until the lock is acquired or timeout elapses.

        Raises:
            LockUnavailableError: lock still held by someone else after timeout
        """
        deadline = time.monotonic() + max(timeout, 0)
        attempts = 0

        while True:
            attempts += 1
            if await self.try_acquire(name, ttl_seconds):
                logger.info(
                    f"Acquired lock '{name}' (holder={self.holder_id[:8]}..., "
                    f"ttl={ttl_seconds}s, attempts={attempts})"
                )
                return

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"Lock '{name}' unavailable after {timeout}s ({attempts} attempts)")
                raise LockUnavailableError(name, timeout)

            logger.debug(f"Lock '{name}' held elsewhere, retrying in {self.poll_interval}s")
            await asyncio.sleep(min(self.poll_interval, remaining))

    @asynccontextmanager
    async def hold(self, name: str, timeout: float, ttl_seconds: int) -> AsyncIterator[None]:
        """
        Hold the lock for the duration of the block.

        Release errors are logged, never raised over the body's outcome.
        """
        await self.acquire(name, timeout, ttl_seconds)
        try:
            yield
        finally:
            try:
                await self.release(name)
                logger.info(f"Released lock '{name}'")
            except Exception as e:
                logger.warning(f"Error releasing lock '{name}': {e}")

    async def with_lock(
        self,
        body: Callable[[], Awaitable[T]],
        name: str,
        timeout: float,
        ttl_seconds: int,
    ) -> T:
        """Run body() while holding the lock and return its result."""
        async with self.hold(name, timeout, ttl_seconds):
            return await body()


# ============================================================================
# POSTGRES LEASE LOCK
# ============================================================================

class LeaseLockService(LockService):
    """
    Lease rows in sequencer.sequencer_locks.

    A lease is taken by INSERT, or by UPDATE of a row whose expires_at has
    passed. Unlike a session advisory lock it does not depend on the
    connection staying open, so a run may use any pooled connection.
    """

    def __init__(
        self,
        pool: AsyncConnectionPool,
        poll_interval: float = 1.0,
        holder_id: Optional[str] = None,
    ):
        super().__init__(poll_interval=poll_interval, holder_id=holder_id)
        self.pool = pool

    async def try_acquire(self, name: str, ttl_seconds: int) -> bool:
        lease = SequencerLease.for_holder(name, self.holder_id, ttl_seconds)
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {table} AS l (lock_name, holder_id, acquired_at, expires_at)
                VALUES (%(lock_name)s, %(holder_id)s, NOW(), NOW() + make_interval(secs => %(ttl)s))
                ON CONFLICT (lock_name) DO UPDATE SET
                    holder_id = EXCLUDED.holder_id,
                    acquired_at = EXCLUDED.acquired_at,
                    expires_at = EXCLUDED.expires_at
                WHERE l.expires_at < NOW() OR l.holder_id = EXCLUDED.holder_id
                RETURNING holder_id
                """).format(table=TABLE_LOCKS),
                {"lock_name": lease.lock_name, "holder_id": lease.holder_id, "ttl": ttl_seconds},
            )
            row = await result.fetchone()
            return row is not None and row["holder_id"] == self.holder_id

    async def release(self, name: str) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("DELETE FROM {} WHERE lock_name = %s AND holder_id = %s").format(TABLE_LOCKS),
                (name, self.holder_id),
            )

    async def current(self, name: str) -> Optional[SequencerLease]:
        """Current lease row, expired or not."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE lock_name = %s").format(TABLE_LOCKS),
                (name,),
            )
            row = await result.fetchone()
            return SequencerLease(**row) if row else None


# ============================================================================
# LOCAL LOCK
# ============================================================================

# Shared across LocalLockService instances so two services in one process contend
_local_leases: Dict[str, SequencerLease] = {}


class LocalLockService(LockService):
    """In-process leases with the same expiry rules as LeaseLockService."""

    def __init__(
        self,
        poll_interval: float = 0.05,
        holder_id: Optional[str] = None,
        leases: Optional[Dict[str, SequencerLease]] = None,
    ):
        super().__init__(poll_interval=poll_interval, holder_id=holder_id)
        self._leases = _local_leases if leases is None else leases

    async def try_acquire(self, name: str, ttl_seconds: int) -> bool:
        existing = self._leases.get(name)
        if existing is not None and not existing.is_expired() and existing.holder_id != self.holder_id:
            return False
        self._leases[name] = SequencerLease.for_holder(name, self.holder_id, ttl_seconds)
        return True

    async def release(self, name: str) -> None:
        existing = self._leases.get(name)
        if existing is not None and existing.holder_id == self.holder_id:
            del self._leases[name]

    def is_held(self, name: str) -> bool:
        lease = self._leases.get(name)
        return lease is not None and not lease.is_expired()

    def expire(self, name: str) -> None:
        """Force a lease past its expiry (simulates a crashed holder)."""
        lease = self._leases.get(name)
        if lease is not None:
            self._leases[name] = lease.model_copy(
                update={"expires_at": utcnow() - timedelta(seconds=1)}
            )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["LockService", "LeaseLockService", "LocalLockService"]
