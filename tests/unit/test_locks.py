"""Unit tests for keyed locks.

Verifies:
  - advisory lock ids are stable and fit a signed bigint
  - the PostgreSQL lock issues pg_advisory_xact_lock with the hashed id
  - database failures surface as PersistenceError
  - the in-process lock serializes holders of the same key
  - idle keys are dropped from the in-process registry
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from finops_cost_engine.adapters.locks import (
    InProcessKeyedLock,
    PostgresAdvisoryLock,
    advisory_lock_id,
    budget_lock_key,
)
from finops_cost_engine.errors import PersistenceError


class TestAdvisoryLockId:
    """Tests for advisory_lock_id()."""

    def test_is_stable(self) -> None:
        key = budget_lock_key("tenant-a", "budget-1")

        assert advisory_lock_id(key) == advisory_lock_id(key)

    def test_distinct_keys_differ(self) -> None:
        assert advisory_lock_id("budget:a:1") != advisory_lock_id("budget:a:2")

    def test_fits_signed_bigint(self) -> None:
        for i in range(200):
            lock_id = advisory_lock_id(f"baseline:t:aws:svc-{i}:2026-06-25")
            assert -(2**63) <= lock_id < 2**63


class TestPostgresAdvisoryLock:
    """Tests for PostgresAdvisoryLock.hold()."""

    @pytest.mark.asyncio
    async def test_executes_xact_lock(self) -> None:
        session = AsyncMock()
        lock = PostgresAdvisoryLock(session)

        async with lock.hold("budget:t:1"):
            pass

        session.execute.assert_awaited_once()
        statement, params = session.execute.await_args.args
        assert "pg_advisory_xact_lock" in str(statement)
        assert params == {"lock_id": advisory_lock_id("budget:t:1")}

    @pytest.mark.asyncio
    async def test_database_error_is_wrapped(self) -> None:
        session = AsyncMock()
        session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection lost"))
        lock = PostgresAdvisoryLock(session)

        with pytest.raises(PersistenceError):
            async with lock.hold("budget:t:1"):
                pass


class TestInProcessKeyedLock:
    """Tests for InProcessKeyedLock.hold()."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self) -> None:
        lock = InProcessKeyedLock()
        inside = 0
        max_inside = 0

        async def worker() -> None:
            nonlocal inside, max_inside
            async with lock.hold("budget:t:1"):
                inside += 1
                max_inside = max(max_inside, inside)
                await asyncio.sleep(0)
                inside -= 1

        await asyncio.gather(*(worker() for _ in range(5)))

        assert max_inside == 1

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self) -> None:
        lock = InProcessKeyedLock()

        async with lock.hold("budget:t:1"):
            await asyncio.wait_for(self._acquire(lock, "budget:t:2"), timeout=1.0)

    @staticmethod
    async def _acquire(lock: InProcessKeyedLock, key: str) -> None:
        async with lock.hold(key):
            pass

    @pytest.mark.asyncio
    async def test_released_keys_are_dropped(self) -> None:
        lock = InProcessKeyedLock()

        for day in range(1, 31):
            async with lock.hold(f"baseline:t:aws:EC2:2026-06-{day:02d}"):
                assert lock.active_keys == 1

        assert lock.active_keys == 0

    @pytest.mark.asyncio
    async def test_key_survives_while_a_waiter_is_queued(self) -> None:
        lock = InProcessKeyedLock()
        release = asyncio.Event()
        order: list[str] = []

        async def first() -> None:
            async with lock.hold("budget:t:1"):
                order.append("first")
                await release.wait()

        async def second() -> None:
            async with lock.hold("budget:t:1"):
                order.append("second")

        first_task = asyncio.create_task(first())
        await asyncio.sleep(0)
        second_task = asyncio.create_task(second())
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(first_task, second_task)

        assert order == ["first", "second"]
        assert lock.active_keys == 0
