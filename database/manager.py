"""
============================================================================
PINGMASTER - DATABASE MANAGER
============================================================================
Async engine and session management for the SQLAlchemy repository.

Sessions commit on success and roll back on failure; SQLAlchemy
errors surface as ``DatabaseQueryError`` so callers only deal with
the ``PersistenceFailure`` family.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from config.settings import DatabaseSettings
from database.models import Base
from exceptions import DatabaseConnectionError, DatabaseQueryError
from utils.logger import get_logger


logger = get_logger("Database")


# ============================================================================
# DATABASE MANAGER CLASS
# ============================================================================

class DatabaseManager:
    """
    Owns the async engine and session factory.
    """

    def __init__(self, settings: DatabaseSettings):
        """
        Initialize database manager.

        Args:
            settings: Database settings section
        """
        self.settings = settings
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self._is_initialized = False
        self._lock = asyncio.Lock()

        logger.info(
            f"[Database] Manager created for {self._mask_password(settings.url)}"
        )

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @staticmethod
    def _mask_password(url: str) -> str:
        """
        Mask password in database URL for logging.
        """
        try:
            return make_url(url).render_as_string(hide_password=True)
        except Exception:
            return url

    def _get_engine_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"echo": self.settings.echo}

        # Use NullPool for SQLite, QueuePool for others
        if self.settings.is_sqlite:
            kwargs["poolclass"] = NullPool
        else:
            kwargs["pool_size"] = self.settings.pool_size
            kwargs["max_overflow"] = self.settings.max_overflow
            kwargs["pool_recycle"] = self.settings.pool_recycle
            kwargs["pool_pre_ping"] = True

        return kwargs

    def _ensure_sqlite_directory(self) -> None:
        database = make_url(self.settings.url).database
        if database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self) -> None:
        """
        Create the engine and session factory, then create missing tables.

        Raises:
            DatabaseConnectionError: If the engine cannot connect
        """
        async with self._lock:
            if self._is_initialized:
                logger.warning("[Database] Already initialized")
                return

            try:
                if self.settings.is_sqlite:
                    self._ensure_sqlite_directory()

                self.engine = create_async_engine(
                    self.settings.url,
                    **self._get_engine_kwargs()
                )

                self._register_event_listeners()

                self.session_factory = async_sessionmaker(
                    self.engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False,
                )

                await self.create_tables()

                self._is_initialized = True
                logger.info("[Database] ✓ Initialized")

            except (SQLAlchemyError, OSError) as e:
                logger.error(f"[Database] ✗ Failed to initialize: {e}")
                if self.engine is not None:
                    await self.engine.dispose()
                    self.engine = None
                raise DatabaseConnectionError(
                    f"Failed to initialize database: {e}",
                    url=self.settings.url,
                    cause=e,
                ) from e

    def _register_event_listeners(self) -> None:
        """Register SQLAlchemy event listeners for connection management."""

        is_sqlite = self.settings.is_sqlite

        @event.listens_for(self.engine.sync_engine, "connect")
        def receive_connect(dbapi_conn, connection_record):
            # SQLite only honours ON DELETE CASCADE with this pragma
            if is_sqlite:
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
            logger.debug("[Database] New connection established")

    async def create_tables(self) -> None:
        """
        Create all database tables.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("[Database] Tables ready")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional scope for database operations.

        Yields:
            AsyncSession instance

        Raises:
            DatabaseConnectionError: If the manager is not initialized
            DatabaseQueryError: If a statement fails

        Example:
            async with db_manager.session() as session:
                monitor = await session.get(Monitor, monitor_id)
        """
        if not self._is_initialized or self.session_factory is None:
            raise DatabaseConnectionError("Database not initialized")

        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise DatabaseQueryError(
                f"Database operation failed: {e}",
                cause=e,
            ) from e
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def check_connection(self) -> bool:
        """
        Check if database connection is alive.

        Returns:
            True if connection is alive, False otherwise
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (DatabaseConnectionError, DatabaseQueryError) as e:
            logger.error(f"[Database] Connection check failed: {e}")
            return False

    async def close(self) -> None:
        """
        Dispose of the engine.
        """
        async with self._lock:
            if self.engine is not None:
                await self.engine.dispose()
                self.engine = None
            self.session_factory = None
            self._is_initialized = False
            logger.info("[Database] Connection closed")
