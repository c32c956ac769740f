"""
Database subsystem.

Provides the async SQLAlchemy engine, session management, the ORM base,
and background health monitoring.
"""

from presence.core.database.base import Base, UTCDateTime, ensure_utc, utc_now
from presence.core.database.health_monitor import (
    DatabaseHealthMonitor,
    DatabaseHealthMonitorConfig,
)
from presence.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "UTCDateTime",
    "ensure_utc",
    "utc_now",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
    "DatabaseHealthMonitor",
    "DatabaseHealthMonitorConfig",
]
