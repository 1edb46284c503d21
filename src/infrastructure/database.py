"""PostgreSQL connection pool for alert and drawing storage."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg
from asyncpg import Pool

from src.infrastructure.config import get_settings
from src.infrastructure.logging import get_logger

logger = get_logger(__name__)

_pool: Pool | None = None
_pool_lock = asyncio.Lock()


async def get_pool() -> Pool:
    """Get or lazily create the shared connection pool."""
    global _pool

    if _pool is not None:
        return _pool

    async with _pool_lock:
        if _pool is not None:
            return _pool

        settings = get_settings()
        _pool = await asyncpg.create_pool(
            str(settings.database_url),
            min_size=1,
            max_size=settings.database_pool_size,
            command_timeout=30,
        )
        logger.info(f"Database pool created (max_size={settings.database_pool_size})")
        return _pool


async def close_pool() -> None:
    """Close the shared pool if it was created."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


@asynccontextmanager
async def get_connection() -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a pooled connection."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        yield conn


@asynccontextmanager
async def transaction() -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a pooled connection inside a transaction."""
    async with get_connection() as conn:
        async with conn.transaction():
            yield conn


async def execute(query: str, *args) -> str:
    """Run a statement and return its status string."""
    async with get_connection() as conn:
        return await conn.execute(query, *args)


async def fetch(query: str, *args) -> list[asyncpg.Record]:
    """Run a query and return all rows."""
    async with get_connection() as conn:
        return await conn.fetch(query, *args)
