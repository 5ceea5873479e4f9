"""
Ritual Engine Database Layer
Owns the async engine, the session factory and the per-ritual write locks.
One Database instance is created per application and handed to services
explicitly; nothing here is a module-level global.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

# table registration
from ritual_engine import models  # noqa: F401

logger = logging.getLogger("ritual_engine")


def _get_connect_args(db_url: str) -> dict:
    """Get database-specific connection arguments."""
    if "sqlite" in db_url:
        return {"check_same_thread": False}
    # PostgreSQL via asyncpg needs no special connect_args
    return {}


class Database:
    """
    Transactional store used by every ritual service.

    ``ritual_lock`` serializes writers of one ritual inside this process;
    the version column on the ritual row guards writers in other processes.
    """

    def __init__(self, db_url: str, *, echo: bool = False):
        self.db_url = db_url
        self.engine = create_async_engine(
            db_url,
            echo=echo,
            future=True,
            pool_pre_ping=True,  # Verify connections before use
            connect_args=_get_connect_args(db_url),
        )
        self.session_factory = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self._ritual_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    async def create_all(self) -> None:
        """Create the schema. Idempotent - safe to run multiple times."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("database_tables_created", extra={"db_url": self.db_url})

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provides a transactional session with automatic cleanup.
        Commits when the block exits cleanly, rolls back on any exception.
        """
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    @asynccontextmanager
    async def ritual_lock(self, ritual_id: str) -> AsyncGenerator[None, None]:
        lock = self._ritual_locks.get(ritual_id)
        if lock is None:
            lock = asyncio.Lock()
            self._ritual_locks[ritual_id] = lock
        async with lock:
            yield

    async def health_check(self) -> bool:
        """Lightweight query to test the connection."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("database_health_check_failed", extra={"error": str(e)})
            return False
