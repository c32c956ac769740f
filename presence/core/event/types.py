"""
Types shared by the in-process EventBus, plus the names of the domain
events the presence services publish.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Awaitable, Callable, Optional, Union

EventPayload = dict[str, Any]

CallbackType = Union[
    Callable[[EventPayload], Any],
    Callable[[EventPayload], Awaitable[Any]],
]


class ListenerPriority(IntEnum):
    """
    Lower runs earlier.

    CRITICAL and HIGH listeners run one at a time with a timeout, NORMAL
    listeners run concurrently and are awaited, LOW listeners are scheduled
    and not awaited.
    """

    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


@dataclass(slots=True, frozen=True)
class EventListener:
    callback: CallbackType
    priority: ListenerPriority
    identifier: str
    once: bool = False

    @classmethod
    def from_callback(
        cls,
        event_name: str,
        callback: CallbackType,
        priority: ListenerPriority,
        identifier: Optional[str],
        once: bool,
    ) -> EventListener:
        # Default identifier is stable per function so a second subscribe is ignored
        if identifier is None:
            name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", repr(callback))
            identifier = f"{getattr(callback, '__module__', '?')}.{name}@{event_name}"
        return cls(callback, priority, identifier, once)


# ============================================================================
# Domain events
# ============================================================================

PLAYER_CONNECTED = "player.connected"
PLAYER_DISCONNECTED = "player.disconnected"
PLAYER_SERVER_SWITCHED = "player.server_switched"
PLAYER_USERNAME_CHANGED = "player.username_changed"

BADGE_ADDED = "badge.added"
BADGE_REMOVED = "badge.removed"
BADGE_ACTIVE_CHANGED = "badge.active_changed"
