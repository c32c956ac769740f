"""
Event Dispatcher

Purpose
-------
Route each decoded inbound event to exactly one handler through an explicit
kind -> handler table.

Failure Policy
--------------
A handler error is terminal for that one event: it is logged and the event
still counts as handled for acknowledgement. There is no retry queue.
Domain rejections (validation, not found, conflicts) log at WARNING;
anything else logs at ERROR with a traceback.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Callable, Dict

from presence.core.exceptions import should_alert
from presence.core.logging.logger import LogContext, get_logger
from presence.modules.badge.service import BadgeResolver
from presence.modules.events.types import (
    EventKind,
    InboundEvent,
    PlayerConnect,
    PlayerDisconnect,
    PlayerRoleChanged,
    PlayerServerSwitch,
)
from presence.modules.player.service import PresenceStateMachine
from presence.modules.shared.exceptions import PresenceDomainException

logger = get_logger(__name__)

Handler = Callable[[Any], Awaitable[None]]


class DispatchResult(Enum):
    HANDLED = "handled"
    FAILED = "failed"
    SKIPPED = "skipped"


class EventDispatcher:
    def __init__(self, presence: PresenceStateMachine, badges: BadgeResolver) -> None:
        self._presence = presence
        self._badges = badges
        self._handlers: Dict[EventKind, Handler] = {
            EventKind.PLAYER_CONNECT: self._on_connect,
            EventKind.PLAYER_DISCONNECT: self._on_disconnect,
            EventKind.PLAYER_SERVER_SWITCH: self._on_server_switch,
            EventKind.PLAYER_ROLE_CHANGED: self._on_role_changed,
        }

    async def dispatch(self, event: InboundEvent) -> DispatchResult:
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.warning("No handler for event kind; skipping", extra={"kind": str(event.kind)})
            return DispatchResult.SKIPPED

        async with LogContext(
            player_id=str(event.player_id),
            event_kind=event.kind.value,
            component="dispatcher",
        ):
            try:
                await handler(event)
            except PresenceDomainException as exc:
                log = logger.error if should_alert(exc) else logger.warning
                log(
                    "Event rejected",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "error_code": exc.error_code,
                    },
                )
                return DispatchResult.FAILED
            except Exception as exc:
                logger.error(
                    "Event handler failed",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )
                return DispatchResult.FAILED

        return DispatchResult.HANDLED

    # ------------------------------------------------------------------ #
    # Handlers
    # ------------------------------------------------------------------ #

    async def _on_connect(self, event: PlayerConnect) -> None:
        await self._presence.connect(
            event.player_id,
            event.username,
            event.server_id,
            event.timestamp,
            skin=event.skin,
            proxy_id=event.proxy_id,
        )

    async def _on_disconnect(self, event: PlayerDisconnect) -> None:
        await self._presence.disconnect(event.player_id, event.username, event.timestamp)

    async def _on_server_switch(self, event: PlayerServerSwitch) -> None:
        await self._presence.switch_server(event.player_id, event.new_server_id)

    async def _on_role_changed(self, event: PlayerRoleChanged) -> None:
        await self._badges.apply_role_change(event.player_id, event.role_id, event.added)
