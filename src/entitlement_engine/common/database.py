"""Async database manager for Entitlement-Engine (single-DB)."""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from entitlement_engine.common.config import EngineSettings, get_settings
from entitlement_engine.common.models import Base

# Import all model modules so Base.metadata is complete for create_all().
import entitlement_engine.tenants.models  # noqa: F401
import entitlement_engine.identity.models  # noqa: F401
import entitlement_engine.catalog.models  # noqa: F401
import entitlement_engine.entitlements.models  # noqa: F401
import entitlement_engine.webhooks.models  # noqa: F401


class DatabaseManager:
    """Manages a single async database engine."""

    def __init__(self, settings: EngineSettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        url = self._settings.db_url
        self.engine = create_async_engine(url, echo=False)
        self._session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized — call init() first")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        if self.engine is None:
            raise RuntimeError("DatabaseManager not initialized — call init() first")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None


async def insert_if_absent(
    session: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    conflict_column: str,
) -> bool:
    """Atomically insert a row unless one with the same unique key exists.

    Returns True if this call inserted the row, False if another writer got
    there first. SQLite and PostgreSQL use ``ON CONFLICT DO NOTHING``; other
    dialects insert inside a savepoint and treat an IntegrityError as a
    duplicate.
    """
    table = model.__table__
    dialect = session.get_bind().dialect.name

    if dialect in ("sqlite", "postgresql"):
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            from sqlalchemy.dialects.postgresql import insert as dialect_insert

        stmt = dialect_insert(table).values(**values).on_conflict_do_nothing(
            index_elements=[conflict_column]
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    try:
        async with session.begin_nested():
            await session.execute(insert(table).values(**values))
    except IntegrityError:
        return False
    return True
