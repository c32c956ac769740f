from .consumer import EventStreamConsumer, entry_timestamp
from .dispatcher import DispatchResult, EventDispatcher
from .types import (
    EventKind,
    InboundEvent,
    PlayerConnect,
    PlayerDisconnect,
    PlayerRoleChanged,
    PlayerServerSwitch,
    RoleChangeType,
    UnknownEventKindError,
    decode_event,
    parse_timestamp,
)

__all__ = [
    "EventStreamConsumer",
    "entry_timestamp",
    "EventDispatcher",
    "DispatchResult",
    "EventKind",
    "InboundEvent",
    "PlayerConnect",
    "PlayerDisconnect",
    "PlayerServerSwitch",
    "PlayerRoleChanged",
    "RoleChangeType",
    "UnknownEventKindError",
    "decode_event",
    "parse_timestamp",
]
