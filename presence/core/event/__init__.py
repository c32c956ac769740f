"""
In-process event system.

State changes in the presence and badge services are published here as
`player.*` and `badge.*` events for outbound integrations to consume.
"""

from .bus import EventBus
from .context import event_log_context
from .types import (
    BADGE_ACTIVE_CHANGED,
    BADGE_ADDED,
    BADGE_REMOVED,
    PLAYER_CONNECTED,
    PLAYER_DISCONNECTED,
    PLAYER_SERVER_SWITCHED,
    PLAYER_USERNAME_CHANGED,
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)

__all__ = [
    "EventBus",
    "EventPayload",
    "ListenerPriority",
    "EventListener",
    "CallbackType",
    "event_log_context",
    "PLAYER_CONNECTED",
    "PLAYER_DISCONNECTED",
    "PLAYER_SERVER_SWITCHED",
    "PLAYER_USERNAME_CHANGED",
    "BADGE_ADDED",
    "BADGE_REMOVED",
    "BADGE_ACTIVE_CHANGED",
]
