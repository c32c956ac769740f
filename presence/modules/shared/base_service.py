"""
Common plumbing for the domain services.

Subclasses get the tunables (`self._config`), the outbound event bus
(`emit_event`), operation logging and the argument checks every public
operation starts with. Sessions come from DatabaseService, never from here.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, Dict, Type

from presence.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from presence.core.config.config_manager import ConfigManager
    from presence.core.event.bus import EventBus


class BaseService:
    def __init__(
        self,
        config_manager: Type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    async def emit_event(self, event_type: str, data: Dict[str, Any]) -> None:
        await self._events.publish(event_type, data)

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(f"{operation} done", extra={"operation": operation, **context})

    def log_error(self, operation: str, error: Exception, **context: Any) -> None:
        self.log.error(
            f"{operation} failed: {error}",
            extra={"operation": operation, "error": str(error), "error_type": type(error).__name__, **context},
        )

    # ========================================================================
    # Argument checks
    # ========================================================================

    @staticmethod
    def parse_player_id(value: Any, name: str = "player_id") -> uuid.UUID:
        """
        Raises:
            ValidationError: Not a UUID or its string form
        """
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except (TypeError, ValueError, AttributeError):
            raise ValidationError(name, f"{name} must be a UUID, got {value!r}") from None

    @staticmethod
    def validate_non_empty(value: Any, name: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(name, f"{name} must be a non-empty string")
        return value
