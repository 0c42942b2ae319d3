import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from ..config import (
    DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_TIMEOUT, DB_GATE_LIMIT,
)

_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    # hosted providers hand out Heroku-style URLs
    ("postgres://", "postgresql+asyncpg://"),
)


def async_url(url: str) -> str:
    """Pin plain database URLs to the async drivers we ship with."""
    for plain, driver in _DRIVERS:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite+aiosqlite://")


def _engine_kwargs(url: str, pool_size: int, max_overflow: int,
                   pool_timeout: int) -> dict:
    if _is_sqlite(url):
        if ":memory:" in url or url.endswith("://"):
            # one shared connection or every session sees an empty db
            return dict(poolclass=StaticPool)
        # aiosqlite runs each connection in its own thread; pooling them
        # only keeps file handles open after dispose
        return dict(poolclass=NullPool)
    return dict(
        pool_pre_ping=True,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
    )


class Database:
    """Engine, session factory and the request gate for one database.

    The gate bounds how many sessions are open at once, so bursts of
    webhooks queue here instead of timing out inside the pool.
    """

    def __init__(self, url: str, *, pool_size: int = DB_POOL_SIZE,
                 max_overflow: int = DB_MAX_OVERFLOW,
                 pool_timeout: int = DB_POOL_TIMEOUT,
                 gate_limit: Optional[int] = DB_GATE_LIMIT) -> None:
        self.url = async_url(url)
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            **_engine_kwargs(self.url, pool_size, max_overflow, pool_timeout)
        )
        if _is_sqlite(self.url):
            event.listen(self.engine.sync_engine, "connect", _sqlite_pragmas)

        self.sessionmaker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        if gate_limit is None:
            gate_limit = pool_size + max_overflow
        self.gate_limit = max(1, gate_limit)
        self._gate = asyncio.Semaphore(self.gate_limit)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self._gate:
            async with self.sessionmaker() as session:
                yield session

    async def create_all(self, metadata: MetaData) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


def _sqlite_pragmas(dbapi_connection, _):
    cur = dbapi_connection.cursor()
    cur.execute("PRAGMA busy_timeout=5000;")
    cur.execute("PRAGMA foreign_keys=ON;")
    cur.close()
