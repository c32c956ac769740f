"""
Pytest Configuration and Fixtures for the Presence Service Tests
=================================================================

Purpose
-------
Centralized fixtures for the presence test suite: a throwaway database per
test, tunable configuration, a real EventBus, a sample badge catalog and
the wired services built on top of them.

Architecture Notes
------------------
- Unit tests run against SQLite (aiosqlite) in a per-test temp file
- Integration tests use testcontainers (real PostgreSQL / Redis) and are
  skipped when Docker is unavailable
- Fixtures follow scope hierarchy: session > module > function
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator, List, Tuple

# Must be set before any presence module is imported (Config loads on import)
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOGS_DIR", str(Path(tempfile.gettempdir()) / "presence-test-logs"))

import pytest
import pytest_asyncio

from presence.core.config.config_manager import ConfigManager
from presence.core.database.service import DatabaseService
from presence.core.event.bus import EventBus
from presence.core.event.types import (
    BADGE_ACTIVE_CHANGED,
    BADGE_ADDED,
    BADGE_REMOVED,
    PLAYER_CONNECTED,
    PLAYER_DISCONNECTED,
    PLAYER_SERVER_SWITCHED,
    PLAYER_USERNAME_CHANGED,
)
from presence.modules.aggregator.service import PresenceAggregator
from presence.modules.badge.catalog import BadgeCatalog, BadgeCatalogHolder
from presence.modules.badge.service import BadgeResolver
from presence.modules.events.dispatcher import EventDispatcher
from presence.modules.player.service import PresenceStateMachine
from presence.modules.query.service import QueryService
from tests.factories import BADGE_CONFIG


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


@pytest.fixture(autouse=True)
def tunables() -> Generator[None, None, None]:
    """
    Load the default tunables for every test.

    Scope: function (tests may override keys with ConfigManager.load_mapping)
    """
    ConfigManager.load_mapping(
        {
            "presence": {
                "search": {"default_page_size": 20},
                "online": {"default_page_size": 100},
                "health": {"failure_threshold": 3, "recovery_threshold": 2},
                "consumer": {"batch_size": 10, "block_ms": 50, "error_backoff_seconds": 0.01},
            },
            "core": {"event": {"listener_timeout": {"critical_seconds": 1.0, "high_seconds": 1.0}}},
        }
    )
    yield
    ConfigManager.load_mapping({})


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[None, None]:
    """
    Initialize DatabaseService against a fresh SQLite file.

    Scope: function (clean slate per test)
    """
    await DatabaseService.initialize(f"sqlite+aiosqlite:///{tmp_path / 'presence.db'}")
    await DatabaseService.create_schema()
    yield
    await DatabaseService.shutdown()


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorded_events(event_bus: EventBus) -> List[Tuple[str, dict]]:
    """Every domain event published on `event_bus`, in order, as (name, payload)."""
    seen: List[Tuple[str, dict]] = []

    def recorder(name: str):
        async def listener(payload: dict) -> None:
            seen.append((name, dict(payload)))

        return listener

    for name in (
        PLAYER_CONNECTED,
        PLAYER_DISCONNECTED,
        PLAYER_SERVER_SWITCHED,
        PLAYER_USERNAME_CHANGED,
        BADGE_ADDED,
        BADGE_REMOVED,
        BADGE_ACTIVE_CHANGED,
    ):
        event_bus.subscribe(name, recorder(name), identifier=f"recorder:{name}")
    return seen


@pytest.fixture
def catalog() -> BadgeCatalogHolder:
    return BadgeCatalogHolder(BadgeCatalog.from_mapping(BADGE_CONFIG))


@pytest.fixture
def presence(database: None, event_bus: EventBus) -> PresenceStateMachine:
    return PresenceStateMachine(ConfigManager, event_bus)


@pytest.fixture
def resolver(database: None, event_bus: EventBus, catalog: BadgeCatalogHolder) -> BadgeResolver:
    return BadgeResolver(ConfigManager, event_bus, catalog)


@pytest.fixture
def aggregator(database: None, event_bus: EventBus) -> PresenceAggregator:
    return PresenceAggregator(ConfigManager, event_bus)


@pytest.fixture
def queries(
    database: None,
    event_bus: EventBus,
    resolver: BadgeResolver,
    aggregator: PresenceAggregator,
) -> QueryService:
    return QueryService(ConfigManager, event_bus, resolver, aggregator)


@pytest.fixture
def dispatcher(presence: PresenceStateMachine, resolver: BadgeResolver) -> EventDispatcher:
    return EventDispatcher(presence, resolver)


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus for unit tests that only check what was published.

    Scope: function
    """
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock(return_value=[])
    mock_bus.subscribe = mocker.MagicMock()
    return mock_bus


@pytest.fixture
def mock_redis(mocker):
    """
    AsyncMock standing in for a redis.asyncio client.

    Scope: function
    """
    client = mocker.MagicMock()
    client.xgroup_create = mocker.AsyncMock(return_value=True)
    client.xreadgroup = mocker.AsyncMock(return_value=[])
    client.xack = mocker.AsyncMock(return_value=1)
    return client
