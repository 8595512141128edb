"""Database connection handle and session management"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from admissions.config import get_settings

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


def to_async_url(url: str) -> str:
    """Convert a plain PostgreSQL URL to the asyncpg driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


class Database:
    """
    Owns the async engine and session factory for one database URL.

    ``connect()`` is idempotent: calling it on an open handle is a no-op and
    calling it after ``close()`` builds a fresh engine, which is what
    short-lived hosts need when a warm process is reused.

    Usage:
        database = Database("sqlite+aiosqlite:///./leads.db")
        await database.connect()
        async with database.session() as session:
            ...
        await database.close()
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = to_async_url(url)
        self._echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not connected; call connect() first")
        return self._engine

    def _engine_kwargs(self) -> dict:
        kwargs: dict = {"echo": self._echo}
        if self.url.startswith("sqlite"):
            # File databases get one connection per session from the default pool
            return kwargs
        kwargs.update({
            "pool_pre_ping": True,
            "pool_size": 10,
            "max_overflow": 20,
            "pool_recycle": 3600,
        })
        return kwargs

    async def connect(self) -> None:
        """Create the engine if it does not exist yet."""
        if self._engine is not None:
            return
        if self.url.startswith("sqlite") and ":memory:" in self.url:
            # :memory: is one shared connection; a closing session can roll back another's writes
            logger.warning("In-memory SQLite shares one connection; background webhook writes are unreliable")
        self._engine = create_async_engine(self.url, **self._engine_kwargs())
        self._sessionmaker = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )
        logger.info("Database engine created: %s", self.url.split("@")[-1])  # Hide credentials in logs

    async def close(self) -> None:
        """Dispose of the engine. A later connect() starts over."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.info("Database connections closed")

    async def create_all(self) -> None:
        """Create tables (development and tests)."""
        await self.connect()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def ping(self) -> None:
        """Run a trivial query; raises if the database is unreachable."""
        async with self.session() as session:
            await session.execute(text("SELECT 1"))

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Open a session, connecting first if needed."""
        await self.connect()
        assert self._sessionmaker is not None
        async with self._sessionmaker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise


_database: Optional[Database] = None


def get_database() -> Database:
    """Return the process-wide database handle (FastAPI dependency)."""
    global _database
    if _database is None:
        settings = get_settings()
        _database = Database(settings.DATABASE_URL, echo=settings.DEBUG)
    return _database


async def get_db(
    database: Database = Depends(get_database),
) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI endpoints to get a database session.

    Usage:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with database.session() as session:
        yield session
