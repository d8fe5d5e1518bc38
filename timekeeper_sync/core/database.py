"""Database connections and utilities."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from timekeeper_sync.core.config import get_settings
from timekeeper_sync.models.tables import Base

logger = logging.getLogger(__name__)


class Database:
    """Database connection manager."""

    def __init__(self, url: Optional[str] = None, echo: bool = False):
        self.url = url or get_settings().database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    async def connect(self):
        """Create the engine and make sure all tables exist."""
        try:
            self.engine = create_async_engine(self.url, echo=self.echo)
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info(f"Connected to database {self.engine.url.render_as_string(hide_password=True)}")
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    async def disconnect(self):
        """Dispose of the engine and its connection pool."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
            logger.info("Disconnected from database")

    @property
    def is_connected(self) -> bool:
        return self.engine is not None

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session scope that commits on success and rolls back on error."""
        if not self._session_factory:
            raise RuntimeError("Database not connected")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> bool:
        """Run a trivial query to check connectivity."""
        async with self.session() as session:
            await session.execute(text("SELECT 1"))
        return True


# Global database instance
database = Database()
