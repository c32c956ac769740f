"""
Player Presence Service - Application Entry Point
==================================================

Bootstrap
---------
- Config validation
- Database initialization and schema creation
- ConfigManager initialization
- Badge catalog load
- Service wiring (EventBus, state machine, resolver, aggregator, queries)
- Redis client and event stream consumer
- Database health monitor
- Graceful shutdown on SIGTERM / SIGINT; SIGHUP reloads tunables and the badge catalog
"""

from __future__ import annotations

import asyncio
import signal
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from presence.core.config.config import Config
from presence.core.config.config_manager import ConfigManager
from presence.core.database.health_monitor import DatabaseHealthMonitor
from presence.core.database.service import DatabaseService
from presence.core.event.bus import EventBus
from presence.core.exceptions import ConfigurationError
from presence.core.logging.logger import get_logger, get_logging_health, shutdown_logging
from presence.core.redis.service import RedisService
from presence.modules.aggregator.service import PresenceAggregator
from presence.modules.badge.catalog import BadgeCatalogHolder
from presence.modules.badge.service import BadgeResolver
from presence.modules.events.consumer import EventStreamConsumer
from presence.modules.events.dispatcher import EventDispatcher
from presence.modules.player.service import PresenceStateMachine
from presence.modules.query.service import QueryService

logger = get_logger(__name__)


@dataclass
class PresenceApplication:
    event_bus: EventBus
    catalog: BadgeCatalogHolder
    presence: PresenceStateMachine
    badges: BadgeResolver
    aggregator: PresenceAggregator
    queries: QueryService
    dispatcher: EventDispatcher
    consumer: Optional[EventStreamConsumer] = None
    health_monitor: Optional[DatabaseHealthMonitor] = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    background: list[asyncio.Task[None]] = field(default_factory=list)


def _badge_config_path() -> Path:
    path = Path(Config.BADGE_CONFIG_PATH)
    return path if path.is_absolute() else Config.PROJECT_ROOT / path


def build_application(catalog: BadgeCatalogHolder, event_bus: Optional[EventBus] = None) -> PresenceApplication:
    """Wire the domain services. Infrastructure must already be initialized."""
    bus = event_bus or EventBus()
    presence = PresenceStateMachine(ConfigManager, bus)
    badges = BadgeResolver(ConfigManager, bus, catalog)
    aggregator = PresenceAggregator(ConfigManager, bus)
    queries = QueryService(ConfigManager, bus, badges, aggregator)

    return PresenceApplication(
        event_bus=bus,
        catalog=catalog,
        presence=presence,
        badges=badges,
        aggregator=aggregator,
        queries=queries,
        dispatcher=EventDispatcher(presence, badges),
    )


# ============================================================================
# Application Bootstrap
# ============================================================================


async def _startup() -> PresenceApplication:
    """Initialize infrastructure, wire services, start background work."""
    logger.info("========== PRESENCE SERVICE INITIALIZATION START ==========")

    # Step 1: Validate configuration early
    try:
        Config.validate()
        logger.info("✓ Configuration validated", extra={"config": Config.get_config_summary()})
    except (ConfigurationError, ValueError) as exc:
        logger.critical(f"Configuration validation failed: {exc}")
        raise

    # Step 2: Initialize database service and schema
    try:
        await DatabaseService.initialize()
        await DatabaseService.create_schema()
        logger.info("✓ Database service initialized")
    except Exception as exc:
        logger.critical(f"Database initialization failed: {exc}", exc_info=True)
        raise

    # Step 3: Initialize config manager
    await ConfigManager.initialize()
    logger.info("✓ Config manager initialized")

    # Step 4: Load badge catalog
    try:
        catalog = BadgeCatalogHolder.from_file(_badge_config_path())
        logger.info("✓ Badge catalog loaded", extra={"badge_count": len(catalog.current)})
    except ConfigurationError as exc:
        logger.critical(f"Badge catalog load failed: {exc}")
        raise

    # Step 5: Wire services
    app = build_application(catalog)
    logger.info("✓ Services initialized")

    # Step 6: Initialize Redis
    try:
        await RedisService.initialize()
        logger.info("✓ Redis service initialized")
    except RuntimeError as exc:
        logger.critical(f"Redis initialization failed: {exc}", exc_info=True)
        raise

    # Step 7: Start consumer and health monitor
    app.consumer = EventStreamConsumer(app.dispatcher)
    await app.consumer.start()
    logger.info("✓ Event stream consumer started")

    app.health_monitor = DatabaseHealthMonitor.from_config()
    app.background.append(
        asyncio.create_task(
            app.health_monitor.run_forever(stop_event=app.stop_event),
            name="presence-db-health-monitor",
        )
    )
    logger.info("✓ Database health monitor started")

    logger.info("========== INFRASTRUCTURE INITIALIZED SUCCESSFULLY ==========")
    return app


# ============================================================================
# Application Shutdown
# ============================================================================


async def _shutdown(app: Optional[PresenceApplication]) -> None:
    """Stop intake, drain in-flight work, then close the store."""
    logger.info("========== PRESENCE SERVICE SHUTDOWN START ==========")

    if app is not None:
        app.stop_event.set()

        # Step 1: Stop consuming; the in-flight event finishes first
        if app.consumer is not None:
            try:
                await app.consumer.stop()
                logger.info("✓ Event stream consumer stopped")
            except Exception as exc:
                logger.error(f"Error while stopping consumer: {exc}", exc_info=True)

        # Step 2: Background tasks and outbound listeners
        if app.background:
            await asyncio.gather(*app.background, return_exceptions=True)
        await app.event_bus.drain()
        logger.info("✓ Background tasks drained")

    # Step 3: Redis
    await RedisService.shutdown()
    logger.info("✓ Redis service shut down")

    # Step 4: Config manager
    await ConfigManager.shutdown()

    # Step 5: Database
    try:
        await DatabaseService.shutdown()
        logger.info("✓ Database service shut down")
    except Exception as exc:
        logger.error(f"Database service shutdown error: {exc}", exc_info=True)

    logger.info("========== SHUTDOWN COMPLETE ==========", extra={"logging": asdict(get_logging_health())})


# ============================================================================
# Application Entrypoint
# ============================================================================


def _install_signal_handlers(app: PresenceApplication) -> None:
    loop = asyncio.get_running_loop()

    def _reload() -> None:
        Config.reload_safe_configs()
        ConfigManager.reload()
        try:
            app.catalog.reload()
        except ConfigurationError as exc:
            logger.error(
                "Badge catalog reload failed; keeping current catalog",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )

    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, app.stop_event.set)
        loop.add_signal_handler(signal.SIGHUP, _reload)
        logger.debug("Signal handlers installed")
    except (NotImplementedError, AttributeError):
        logger.debug("Signal handlers not supported on this platform")


async def main() -> None:
    """
    Lifecycle:
        1. Validate configuration
        2. Initialize infrastructure and services
        3. Consume events until a shutdown signal arrives
        4. Shut down gracefully
    """
    app: Optional[PresenceApplication] = None
    try:
        app = await _startup()
        _install_signal_handlers(app)
        logger.info("Presence service running")
        await app.stop_event.wait()
        logger.info("Shutdown signal received")
    except asyncio.CancelledError:
        logger.warning("Asyncio task cancellation received; shutting down gracefully.")
        await _shutdown(app)
        shutdown_logging()
        raise
    except Exception as exc:
        logger.critical(f"Fatal startup error: {exc}", exc_info=True)
        await _shutdown(app)
        shutdown_logging()
        sys.exit(1)

    await _shutdown(app)
    shutdown_logging()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Service manually stopped via keyboard interrupt.")


if __name__ == "__main__":
    run()
