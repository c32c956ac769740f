"""
Database Service

Owns the single AsyncEngine of the process and hands out sessions.

- `get_transaction()` is the only way to write: it commits when the block
  exits normally and rolls back (then re-raises) on any exception.
- `get_session()` is for reads; nothing is committed.
- On PostgreSQL every session gets `SET LOCAL statement_timeout` so a slow
  query cannot hold a pooled connection forever.
- SQLite (aiosqlite) is used by tests and local runs. It gets a NullPool
  and ignores row locks.

>>> async with DatabaseService.get_transaction() as session:
...     player = await PlayerRepository().get_for_update(session, player_id)
...     player.current_skin = skin
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from presence.core.config.config import Config
from presence.core.database.base import Base
from presence.core.exceptions import DatabaseError
from presence.core.logging.logger import get_logger

logger = get_logger(__name__)


class DatabaseInitializationError(RuntimeError):
    """Engine could not be created from the configured URL."""


class DatabaseNotInitializedError(RuntimeError):
    """A session was requested before `DatabaseService.initialize()`."""


@dataclass(frozen=True)
class _EngineSettings:
    url: str
    echo: bool
    pooled: bool
    statement_timeout_ms: int

    @classmethod
    def resolve(cls, url: Optional[str]) -> _EngineSettings:
        resolved = url or Config.DATABASE_URL
        if not isinstance(resolved, str) or not resolved:
            raise DatabaseInitializationError("DATABASE_URL must be a non-empty string")
        return cls(
            url=resolved,
            echo=Config.DATABASE_ECHO,
            pooled=not resolved.startswith("sqlite"),
            statement_timeout_ms=Config.DATABASE_STATEMENT_TIMEOUT_MS,
        )

    @property
    def scheme(self) -> str:
        return self.url.split(":", 1)[0]

    @property
    def is_postgres(self) -> bool:
        return self.scheme.startswith("postgresql")

    def engine_kwargs(self) -> Dict[str, Any]:
        if not self.pooled:
            return {"echo": self.echo, "poolclass": NullPool}
        return {
            "echo": self.echo,
            "pool_size": Config.DATABASE_POOL_SIZE,
            "max_overflow": Config.DATABASE_MAX_OVERFLOW,
            "pool_recycle": Config.DATABASE_POOL_RECYCLE,
            "pool_timeout": Config.DATABASE_POOL_TIMEOUT,
            "pool_pre_ping": True,
        }


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 2)


class DatabaseService:
    """Process-wide engine and session factory; all members are classmethods."""

    _engine: Optional[AsyncEngine] = None
    _sessions: Optional[async_sessionmaker[AsyncSession]] = None
    _settings: Optional[_EngineSettings] = None
    _init_lock: Optional[asyncio.Lock] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @classmethod
    def _lock(cls) -> asyncio.Lock:
        # Created lazily so the lock binds to the running loop
        if cls._init_lock is None:
            cls._init_lock = asyncio.Lock()
        return cls._init_lock

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """
        Create the engine. A second call while initialized is a no-op.

        Raises:
            DatabaseInitializationError: Missing URL or engine creation failure
        """
        async with cls._lock():
            if cls._engine is not None:
                return

            try:
                settings = _EngineSettings.resolve(url)
                engine = create_async_engine(settings.url, **settings.engine_kwargs())
            except DatabaseInitializationError:
                logger.error("DATABASE_URL is not configured")
                raise
            except Exception as exc:
                logger.error(
                    "Database engine creation failed",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )
                raise DatabaseInitializationError(f"Database initialization failed: {exc}") from exc

            cls._engine = engine
            cls._settings = settings
            cls._sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            logger.info(
                "Database engine ready",
                extra={"scheme": settings.scheme, "pooled": settings.pooled},
            )

    @classmethod
    async def create_schema(cls) -> None:
        """Create missing tables and indexes."""
        engine = cls._require_engine()

        # Registers every mapped table on Base.metadata
        import presence.database.models  # noqa: F401

        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            logger.error(
                "Schema creation failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            raise DatabaseError("create_schema", exc) from exc

        logger.info("Database schema ensured", extra={"tables": sorted(Base.metadata.tables)})

    @classmethod
    async def shutdown(cls) -> None:
        async with cls._lock():
            engine, cls._engine, cls._sessions, cls._settings = cls._engine, None, None, None
            if engine is None:
                return
            try:
                await engine.dispose()
            finally:
                cls._init_lock = None
            logger.info("Database engine disposed")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    @classmethod
    def _require_engine(cls) -> AsyncEngine:
        if cls._engine is None:
            raise DatabaseNotInitializedError(
                "DatabaseService.initialize() must run before the database is used"
            )
        return cls._engine

    # ========================================================================
    # Health
    # ========================================================================

    @classmethod
    async def health_check(cls) -> bool:
        """`SELECT 1` round trip. Connection-level failures return False."""
        if cls._engine is None:
            return False

        start = time.perf_counter()
        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (DBAPIError, OSError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__, "duration_ms": _elapsed_ms(start)},
            )
            return False

        logger.debug("Database health check ok", extra={"duration_ms": _elapsed_ms(start)})
        return True

    # ========================================================================
    # Sessions
    # ========================================================================

    @classmethod
    async def _new_session(cls) -> AsyncSession:
        cls._require_engine()
        assert cls._sessions is not None and cls._settings is not None

        session = cls._sessions()
        if cls._settings.is_postgres:
            await session.execute(
                text(f"SET LOCAL statement_timeout = {int(cls._settings.statement_timeout_ms)}")
            )
        return session

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        session = await cls._new_session()
        try:
            yield session
        finally:
            await session.close()

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        session = await cls._new_session()
        start = time.perf_counter()
        try:
            yield session
            await session.commit()
        except DBAPIError as exc:
            await session.rollback()
            logger.error(
                "Transaction failed in the driver; rolled back",
                extra={"error": str(exc), "error_type": type(exc).__name__, "duration_ms": _elapsed_ms(start)},
                exc_info=True,
            )
            raise
        except Exception as exc:
            # Domain errors roll back quietly; callers log them
            await session.rollback()
            logger.debug(
                "Transaction rolled back",
                extra={"error_type": type(exc).__name__, "duration_ms": _elapsed_ms(start)},
            )
            raise
        finally:
            await session.close()
