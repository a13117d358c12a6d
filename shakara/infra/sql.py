import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, Callable, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)

Gated = Callable[[], AsyncContextManager[None]]

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    # concurrent webhook deliveries wait for the writer instead of failing
    "PRAGMA busy_timeout=5000;",
    "PRAGMA synchronous=NORMAL;",
)


def _normalize_async_url(url: str) -> str:
    for plain, async_url in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return url.replace(plain, async_url, 1)
    return url


@dataclass(frozen=True)
class PoolConfig:
    size: int = 10
    max_overflow: int = 10
    timeout: int = 30
    gate_limit: Optional[int] = None

    @classmethod
    def from_env(cls) -> "PoolConfig":
        gate = os.getenv("DB_GATE_LIMIT")
        return cls(
            size=int(os.getenv("DB_POOL_SIZE", "10")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            gate_limit=int(gate) if gate else None,
        )


def make_gate(limit: int) -> Gated:
    """Semaphore around store transactions so callers queue here, not on the pool."""
    sem = asyncio.Semaphore(max(1, limit))

    @asynccontextmanager
    async def gated():
        async with sem:
            yield

    return gated


def _install_sqlite_pragmas(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _):
        cur = dbapi_connection.cursor()
        for pragma in SQLITE_PRAGMAS:
            cur.execute(pragma)
        cur.close()


def make_async_engine(
    database_url: str, pool: Optional[PoolConfig] = None
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession], Gated]:
    pool = pool or PoolConfig.from_env()
    url = _normalize_async_url(database_url)
    is_sqlite = url.startswith("sqlite+aiosqlite://")

    kw = dict(future=True, pool_pre_ping=True)
    if not is_sqlite:
        kw.update(
            pool_size=pool.size,
            max_overflow=pool.max_overflow,
            pool_timeout=pool.timeout,
        )
    engine = create_async_engine(url, **kw)
    if is_sqlite:
        _install_sqlite_pragmas(engine)

    sessions = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    # postgres: one gate slot per pooled connection unless overridden
    limit = pool.gate_limit or (10 if is_sqlite else pool.size)
    return engine, sessions, make_gate(limit)
