from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from vanplane.core.config import get_settings


def build_engine(database_url: str) -> AsyncEngine:
    # Bounded pools for Postgres; SQLite is single-file and needs FK enforcement switched on.
    settings = get_settings()
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
        engine_kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_recycle"] = 1800
        if settings.db_statement_timeout_ms > 0:
            engine_kwargs["connect_args"] = {
                "server_settings": {"statement_timeout": str(int(settings.db_statement_timeout_ms))}
            }
    built = create_async_engine(database_url, **engine_kwargs)
    if database_url.startswith("sqlite"):
        _enable_sqlite_foreign_keys(built)
    return built


def _enable_sqlite_foreign_keys(target: AsyncEngine) -> None:
    # Cascading deletes are a store invariant; SQLite only honours them with this pragma.
    @event.listens_for(target.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_sessionmaker(target: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(target, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = build_sessionmaker(engine)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


def pool_stats() -> dict[str, int | None]:
    # Expose DB pool counters for ops visibility without querying Postgres internals.
    pool = engine.sync_engine.pool
    checked_out_fn = getattr(pool, "checkedout", None)
    checked_in_fn = getattr(pool, "checkedin", None)
    overflow_fn = getattr(pool, "overflow", None)
    size_fn = getattr(pool, "size", None)
    return {
        "size": int(size_fn()) if callable(size_fn) else None,
        "checked_out": int(checked_out_fn()) if callable(checked_out_fn) else None,
        "checked_in": int(checked_in_fn()) if callable(checked_in_fn) else None,
        "overflow": int(overflow_fn()) if callable(overflow_fn) else None,
    }
