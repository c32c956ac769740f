"""
Testcontainers fixtures for integration tests.

Containers are started once per session. When Docker is not available the
dependent tests are skipped rather than failed.
"""

from __future__ import annotations

from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from sqlalchemy import text
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from presence.core.database.service import DatabaseService
from presence.core.logging.logger import get_logger
from presence.core.redis.service import RedisService

logger = get_logger(__name__)


def _start_or_skip(container, label: str):
    try:
        container.start()
    except Exception as exc:  # Docker missing or daemon unreachable
        pytest.skip(f"{label} testcontainer unavailable: {exc}")
    return container


# ============================================================================
# TESTCONTAINERS FIXTURES
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL testcontainer for integration tests.

    Scope: session (container persists across all tests)
    """
    logger.info("Starting PostgreSQL testcontainer...")
    container = _start_or_skip(PostgresContainer(image="postgres:16-alpine", driver="asyncpg"), "PostgreSQL")
    logger.info("PostgreSQL testcontainer started")

    yield container

    logger.info("Stopping PostgreSQL testcontainer...")
    container.stop()


@pytest.fixture(scope="session")
def redis_container() -> Generator[RedisContainer, None, None]:
    """
    Start Redis testcontainer for integration tests.

    Scope: session (container persists across all tests)
    """
    logger.info("Starting Redis testcontainer...")
    container = _start_or_skip(RedisContainer(image="redis:7-alpine"), "Redis")
    logger.info("Redis testcontainer started")

    yield container

    logger.info("Stopping Redis testcontainer...")
    container.stop()


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def pg_database(postgres_container: PostgresContainer) -> AsyncGenerator[None, None]:
    """
    DatabaseService bound to the PostgreSQL container with an empty schema.

    Scope: function (tables truncated after each test)
    """
    await DatabaseService.initialize(postgres_container.get_connection_url())
    await DatabaseService.create_schema()
    yield
    async with DatabaseService.get_transaction() as session:
        await session.execute(
            text("TRUNCATE players, player_badges, login_sessions, username_history CASCADE")
        )
    await DatabaseService.shutdown()


@pytest_asyncio.fixture
async def redis_client(redis_container: RedisContainer):
    """
    RedisService initialized against the Redis container; flushed afterwards.

    Scope: function
    """
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    await RedisService.initialize(f"redis://{host}:{port}/0")
    client = RedisService.get_client()
    yield client
    await client.flushdb()
    await RedisService.shutdown()
