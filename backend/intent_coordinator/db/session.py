from __future__ import annotations

from typing import Any

from sqlalchemy import event, pool
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from intent_coordinator.db.base import Base


def make_engine(dsn: str, **kwargs: Any) -> AsyncEngine:
    """Async engine for the store.

    SQLite (tests/dev) gets FK enforcement, no pooling and ``BEGIN IMMEDIATE``
    transactions, so concurrent writers queue on the busy timeout instead of
    failing with "database is locked".
    """
    if dsn.startswith("sqlite"):
        kwargs.pop("pool_size", None)
        kwargs.setdefault("poolclass", pool.NullPool)
        kwargs.setdefault("connect_args", {"timeout": 30})
        engine = create_async_engine(dsn, echo=False, **kwargs)

        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_conn: Any, _record: Any) -> None:
            # транзакциями управляем сами, см. _begin
            dbapi_conn.isolation_level = None
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _begin(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine
    return create_async_engine(dsn, echo=False, pool_pre_ping=True, **kwargs)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def create_all(engine: AsyncEngine) -> None:
    """Create tables directly (dev/tests); production goes through Alembic."""
    import intent_coordinator.models  # noqa: F401  register tables

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

