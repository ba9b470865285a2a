"""Keyed mutual exclusion for read-modify-write units.

Two units that touch the same budget or the same baseline key must not
interleave. Multi-worker deployments use a PostgreSQL transaction-scoped
advisory lock, which is released automatically at commit or rollback. Single
worker deployments (and tests) can use the in-process registry instead.
"""

import asyncio
import hashlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from finops_cost_engine.errors import PersistenceError
from finops_cost_engine.observability import get_logger

logger = get_logger(__name__)


def advisory_lock_id(key: str) -> int:
    """Stable signed 64-bit id for a lock key.

    Python's ``hash()`` is salted per process, so a digest is used to get the
    same id on every worker.
    """
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, byteorder="big", signed=True)


def budget_lock_key(tenant_id: str, budget_id: object) -> str:
    return f"budget:{tenant_id}:{budget_id}"


def baseline_lock_key(tenant_id: str, provider_id: str, service_name: str, baseline_date: object) -> str:
    return f"baseline:{tenant_id}:{provider_id}:{service_name}:{baseline_date}"


class PostgresAdvisoryLock:
    """``pg_advisory_xact_lock`` keyed by a hash of the lock key.

    Must be entered inside an open transaction on `session`; the lock is held
    until that transaction ends, not until the block exits.

    Args:
        session: The session whose transaction owns the lock.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock_id = advisory_lock_id(key)
        try:
            await self._session.execute(
                text("SELECT pg_advisory_xact_lock(:lock_id)"),
                {"lock_id": lock_id},
            )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to acquire advisory lock for {key}: {exc}") from exc
        logger.debug("advisory_lock_acquired", key=key, lock_id=lock_id)
        yield


class InProcessKeyedLock:
    """Registry of ``asyncio.Lock`` objects, one per key, for a single process.

    A key's lock is dropped once no task holds or waits on it, so dated keys
    do not accumulate in a long-lived worker.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @property
    def active_keys(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]
