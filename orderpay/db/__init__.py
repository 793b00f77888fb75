"""Storage lifecycle: the asyncpg pool and the active ``Store``.

Both are process-wide singletons created lazily on first use, opened by
``init_store()`` on application startup and released by ``close_store()``
on shutdown.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import asyncpg

from ..settings import settings

if TYPE_CHECKING:
    from .base import Store

_pool: Optional[asyncpg.Pool] = None
_store: Optional["Store"] = None


async def get_pool() -> asyncpg.Pool:
    """Return (and lazily create) the asyncpg connection pool."""
    global _pool
    if _pool is None:
        if not settings.database_url:
            raise RuntimeError(
                "DATABASE_URL is not set. "
                "Postgres is required unless STORAGE_BACKEND=memory."
            )
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout_seconds,
        )
    return _pool


async def close_pool() -> None:
    """Shut down the connection pool (call on app shutdown)."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def get_store() -> "Store":
    """Return the configured store, constructing it on first use."""
    global _store
    if _store is None:
        backend = (settings.storage_backend or "postgres").lower()
        if backend == "memory":
            from .memory import MemoryStore

            _store = MemoryStore()
        elif backend == "postgres":
            from .postgres import PostgresStore

            _store = PostgresStore()
        else:
            raise RuntimeError(f"Unknown STORAGE_BACKEND: {settings.storage_backend!r}")
    return _store


def set_store(store: "Store") -> None:
    """Override the active store (useful for tests)."""
    global _store
    _store = store


def reset_store() -> None:
    global _store
    _store = None


async def init_store() -> "Store":
    store = get_store()
    await store.open()
    return store


async def close_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
