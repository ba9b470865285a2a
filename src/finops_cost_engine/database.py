"""Async SQLAlchemy engine, ORM base, and repository/transaction primitives.

Every tenant-scoped table extends ``TenantModel``, which supplies id (UUID),
tenant_id, created_at and updated_at columns. Repositories extend
``BaseRepository`` and never commit: the caller owns the transaction boundary
through ``SessionTransactionManager.transaction()``.
"""

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from finops_cost_engine.errors import PersistenceError
from finops_cost_engine.observability import get_logger
from finops_cost_engine.settings import Settings

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Shared declarative base so Alembic sees a single metadata object."""


class TenantModel(Base):
    """Abstract base for tenant-scoped tables."""

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Owning tenant (row-level security key)",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


ModelT = TypeVar("ModelT", bound=TenantModel)


class BaseRepository(Generic[ModelT]):
    """Generic create/get/delete operations shared by all repositories.

    Args:
        session: The unit-of-work session. Repositories flush but never commit.
        model: The ORM class managed by this repository.
    """

    def __init__(self, session: AsyncSession, model: type[ModelT]) -> None:
        self._session = session
        self._model = model

    async def _execute(self, statement: Any, action: str) -> Any:
        """Execute a statement, surfacing driver errors as PersistenceError."""
        try:
            return await self._session.execute(statement)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to {action}: {exc}") from exc

    async def create(self, instance: ModelT) -> ModelT:
        """Add and flush a new row so server defaults and the id are populated."""
        try:
            self._session.add(instance)
            await self._session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to insert into {self._model.__tablename__}: {exc}"
            ) from exc
        return instance

    async def get_by_id(self, record_id: uuid.UUID) -> ModelT | None:
        """Retrieve a row by primary key."""
        try:
            return await self._session.get(self._model, record_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to load {self._model.__tablename__} {record_id}: {exc}"
            ) from exc

    async def delete(self, instance: ModelT) -> None:
        """Delete a row; ORM and FK cascades remove its dependents."""
        try:
            await self._session.delete(instance)
            await self._session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to delete from {self._model.__tablename__}: {exc}"
            ) from exc


class SessionTransactionManager:
    """Wrap a session so services can demarcate atomic units of work.

    The outermost ``transaction()`` commits whatever the session has pending
    (including reads that autobegan the transaction) and rolls back on any
    exception. Blocks entered inside it become SAVEPOINTs, so a tenant unit
    that calls several services still commits once.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._depth = 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed block atomically."""
        if self._depth:
            self._depth += 1
            try:
                async with self._session.begin_nested():
                    yield
            finally:
                self._depth -= 1
            return

        self._depth += 1
        try:
            yield
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.error("transaction_rolled_back", error=str(exc))
            raise PersistenceError(f"Transaction failed: {exc}") from exc
        except BaseException:
            await self._session.rollback()
            raise
        finally:
            self._depth -= 1


def create_engine_and_sessionmaker(
    settings: Settings,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Build the async engine and a session factory from settings.

    Args:
        settings: Engine settings supplying the asyncpg DSN.

    Returns:
        Tuple of (engine, session factory).
    """
    engine = create_async_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory
