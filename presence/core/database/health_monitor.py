"""
Database Health Monitor

Background loop that pings the store every `HEALTH_CHECK_INTERVAL_SECONDS`
and logs when availability changes. The reported state only flips after a
streak: `presence.health.failure_threshold` failed pings in a row mark the
store unhealthy, `presence.health.recovery_threshold` good pings mark it
healthy again. Until the first streak completes the state is unknown (None).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from presence.core.config.config import Config
from presence.core.config.config_manager import ConfigManager
from presence.core.database.service import DatabaseService
from presence.core.logging.logger import get_logger

logger = get_logger(__name__)

HealthCheck = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class DatabaseHealthMonitorConfig:
    interval_seconds: float
    failure_threshold: int
    recovery_threshold: int

    @classmethod
    def from_config(cls) -> DatabaseHealthMonitorConfig:
        return cls(
            interval_seconds=float(Config.HEALTH_CHECK_INTERVAL_SECONDS),
            failure_threshold=max(1, ConfigManager.get_int("presence.health.failure_threshold", 3)),
            recovery_threshold=max(1, ConfigManager.get_int("presence.health.recovery_threshold", 2)),
        )


class DatabaseHealthMonitor:
    def __init__(self, config: DatabaseHealthMonitorConfig, check: Optional[HealthCheck] = None) -> None:
        self._config = config
        self._check: HealthCheck = check or DatabaseService.health_check
        self._streak_ok: bool = True
        self._streak: int = 0
        self._is_healthy: Optional[bool] = None

    @classmethod
    def from_config(cls) -> DatabaseHealthMonitor:
        return cls(DatabaseHealthMonitorConfig.from_config())

    @property
    def is_healthy(self) -> Optional[bool]:
        return self._is_healthy

    async def tick_once(self) -> Optional[bool]:
        """Ping once, update the streak, and return the settled state."""
        ok = await self._check()

        if ok == self._streak_ok:
            self._streak += 1
        else:
            self._streak_ok, self._streak = ok, 1

        needed = self._config.recovery_threshold if ok else self._config.failure_threshold
        if self._is_healthy is not ok and self._streak >= needed:
            self._is_healthy = ok
            log = logger.info if ok else logger.error
            log(
                "Database is reachable again" if ok else "Database marked unhealthy",
                extra={"streak": self._streak, "threshold": needed},
            )

        return self._is_healthy

    async def run_forever(self, *, stop_event: asyncio.Event) -> None:
        logger.info(
            "Database health monitor started",
            extra={
                "interval_seconds": self._config.interval_seconds,
                "failure_threshold": self._config.failure_threshold,
                "recovery_threshold": self._config.recovery_threshold,
            },
        )
        try:
            while not stop_event.is_set():
                await self.tick_once()
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self._config.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.info("Database health monitor stopped", extra={"last_state": self._is_healthy})
