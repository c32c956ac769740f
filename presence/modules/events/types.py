"""
Inbound event types.

Purpose
-------
A closed tagged union over the four inbound event kinds plus the decoder
that turns a wire `(kind, payload)` pair into one of them.

Wire Format
-----------
    kind     : player_connect | player_disconnect | player_server_switch | player_role_changed
    payload  : JSON object with camelCase keys

    player_connect       {playerId, username, serverId, proxyId?, skin?, timestamp?}
    player_disconnect    {playerId, username, timestamp?}
    player_server_switch {playerId, newServerId, timestamp?}
    player_role_changed  {playerId, externalRoleId, changeType: ADD|REMOVE, timestamp?}

`timestamp` is ISO-8601 or epoch milliseconds. When absent the caller's
fallback (the delivery time) is used.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Mapping, Optional, Union

from presence.core.database.base import ensure_utc
from presence.modules.shared.exceptions import ValidationError


class EventKind(str, Enum):
    PLAYER_CONNECT = "player_connect"
    PLAYER_DISCONNECT = "player_disconnect"
    PLAYER_SERVER_SWITCH = "player_server_switch"
    PLAYER_ROLE_CHANGED = "player_role_changed"


class RoleChangeType(str, Enum):
    ADD = "ADD"
    REMOVE = "REMOVE"


class UnknownEventKindError(ValidationError):
    def __init__(self, kind: Any) -> None:
        self.kind = kind
        super().__init__("kind", f"unknown event kind {kind!r}")


@dataclass(frozen=True)
class PlayerConnect:
    kind: ClassVar[EventKind] = EventKind.PLAYER_CONNECT

    player_id: uuid.UUID
    username: str
    server_id: str
    timestamp: datetime
    proxy_id: Optional[str] = None
    skin: Optional[str] = None


@dataclass(frozen=True)
class PlayerDisconnect:
    kind: ClassVar[EventKind] = EventKind.PLAYER_DISCONNECT

    player_id: uuid.UUID
    username: str
    timestamp: datetime


@dataclass(frozen=True)
class PlayerServerSwitch:
    kind: ClassVar[EventKind] = EventKind.PLAYER_SERVER_SWITCH

    player_id: uuid.UUID
    new_server_id: str
    timestamp: datetime


@dataclass(frozen=True)
class PlayerRoleChanged:
    kind: ClassVar[EventKind] = EventKind.PLAYER_ROLE_CHANGED

    player_id: uuid.UUID
    role_id: str
    change_type: RoleChangeType
    timestamp: datetime

    @property
    def added(self) -> bool:
        return self.change_type is RoleChangeType.ADD


InboundEvent = Union[PlayerConnect, PlayerDisconnect, PlayerServerSwitch, PlayerRoleChanged]


# ============================================================================
# Decoding
# ============================================================================


def _from_epoch_ms(value: float) -> datetime:
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise ValidationError("timestamp", f"epoch milliseconds out of range: {value!r}") from None


def parse_timestamp(value: Any, fallback: datetime) -> datetime:
    if value is None or value == "":
        return ensure_utc(fallback)
    if isinstance(value, bool):
        raise ValidationError("timestamp", f"unsupported timestamp {value!r}")
    if isinstance(value, (int, float)):
        return _from_epoch_ms(value)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return _from_epoch_ms(int(text))
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            raise ValidationError("timestamp", f"unparseable timestamp {value!r}") from None
    raise ValidationError("timestamp", f"unsupported timestamp {value!r}")


def _require_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(key, f"{key} must be a non-empty string")
    return value


def _optional_str(payload: Mapping[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(key, f"{key} must be a string")
    return value


def _player_id(payload: Mapping[str, Any]) -> uuid.UUID:
    raw = _require_str(payload, "playerId")
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise ValidationError("playerId", f"playerId must be a UUID, got {raw!r}") from None


def _skin(payload: Mapping[str, Any]) -> Optional[str]:
    value = payload.get("skin")
    if isinstance(value, Mapping):
        value = value.get("texture")
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError("skin", "skin must be a string or an object with a texture")
    return value


def decode_event(kind: Any, payload: Any, fallback_timestamp: datetime) -> InboundEvent:
    """
    Build a typed event from a wire kind and payload.

    Raises:
        UnknownEventKindError: `kind` is not one of the four kinds
        ValidationError: the payload is malformed
    """
    try:
        event_kind = EventKind(kind)
    except ValueError:
        raise UnknownEventKindError(kind) from None

    if not isinstance(payload, Mapping):
        raise ValidationError("payload", "payload must be a JSON object")

    player_id = _player_id(payload)
    timestamp = parse_timestamp(payload.get("timestamp"), fallback_timestamp)

    if event_kind is EventKind.PLAYER_CONNECT:
        return PlayerConnect(
            player_id=player_id,
            username=_require_str(payload, "username"),
            server_id=_require_str(payload, "serverId"),
            timestamp=timestamp,
            proxy_id=_optional_str(payload, "proxyId"),
            skin=_skin(payload),
        )

    if event_kind is EventKind.PLAYER_DISCONNECT:
        return PlayerDisconnect(
            player_id=player_id,
            username=_require_str(payload, "username"),
            timestamp=timestamp,
        )

    if event_kind is EventKind.PLAYER_SERVER_SWITCH:
        return PlayerServerSwitch(
            player_id=player_id,
            new_server_id=_require_str(payload, "newServerId"),
            timestamp=timestamp,
        )

    change = _require_str(payload, "changeType").upper()
    try:
        change_type = RoleChangeType(change)
    except ValueError:
        raise ValidationError("changeType", f"changeType must be ADD or REMOVE, got {change!r}") from None

    return PlayerRoleChanged(
        player_id=player_id,
        role_id=_require_str(payload, "externalRoleId"),
        change_type=change_type,
        timestamp=timestamp,
    )
