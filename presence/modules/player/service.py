"""
Presence State Machine

Purpose
-------
Turn connect, disconnect and server-switch events into player state
transitions: Unknown -> Offline <-> Online.

Responsibilities
----------------
- Connect: create the player on first sight, record username changes,
  set placement, open a login session
- Disconnect: close the open session, add its duration to playtime,
  clear placement, stamp last_online
- ServerSwitch: move an online player; never brings an offline player online

Design Notes
------------
- Each transition is one database transaction. The player row is locked
  (SELECT FOR UPDATE) before placement or session changes so concurrent
  workers serialize per player.
- Online <=> server_id IS NOT NULL <=> exactly one open login session.
- A Connect for a player who is already online refreshes placement and
  keeps the existing session. It never opens a second one.
- Lifecycle events may arrive late or twice. A Connect older than the
  last disconnect (offline player) or than the open session (online
  player) is ignored, as is a Disconnect older than the open session.
- Domain events are published after commit.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Type

from presence.core.database.service import DatabaseService
from presence.core.database.base import ensure_utc
from presence.core.event.types import (
    PLAYER_CONNECTED,
    PLAYER_DISCONNECTED,
    PLAYER_SERVER_SWITCHED,
    PLAYER_USERNAME_CHANGED,
)
from presence.core.logging.logger import get_logger
from presence.database.models import LoginSession, Player
from presence.modules.player.placement import Placement
from presence.modules.player.repository import PlayerRepository
from presence.modules.session.service import SessionLedger, StaleLogout
from presence.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from presence.core.config.config_manager import ConfigManager
    from presence.core.event.bus import EventBus

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConnectOutcome:
    created: bool
    refreshed: bool
    username_changed: bool
    previous_username: Optional[str] = None
    stale: bool = False


@dataclass(frozen=True)
class DisconnectOutcome:
    duration_ms: int
    total_playtime_ms: int


class PresenceStateMachine(BaseService):
    def __init__(
        self,
        config_manager: Type[ConfigManager],
        event_bus: EventBus,
        ledger: Optional[SessionLedger] = None,
        players: Optional[PlayerRepository] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._ledger = ledger or SessionLedger()
        self._players = players or PlayerRepository()

    # ========================================================================
    # Connect
    # ========================================================================

    async def connect(
        self,
        player_id: Any,
        username: str,
        server_id: str,
        at: datetime,
        *,
        skin: Optional[str] = None,
        proxy_id: Optional[str] = None,
    ) -> ConnectOutcome:
        """
        Bring a player online on `server_id`.

        A Connect that predates the player's current state is ignored and
        reported with `stale=True`; nothing is written or published.

        Raises:
            ValidationError: Malformed player ID, username or server ID
        """
        pid = self.parse_player_id(player_id)
        self.validate_non_empty(username, "username")
        placement = Placement.for_server(self.validate_non_empty(server_id, "server_id"), proxy_id)

        async with DatabaseService.get_transaction() as session:
            created = await self._players.insert_if_absent(session, pid, username, at, skin)
            player = await self._players.get_for_update(session, pid)
            assert player is not None

            open_session = await self._ledger.get_open(session, pid)
            superseded_by = None if created else self._superseded_by(player, open_session, at)
            if superseded_by is not None:
                self.log.warning(
                    "Stale connect ignored",
                    extra={
                        "player_id": str(pid),
                        "event_time": ensure_utc(at).isoformat(),
                        "superseded_by": superseded_by.isoformat(),
                    },
                )
                return ConnectOutcome(created=False, refreshed=False, username_changed=False, stale=True)

            previous_username: Optional[str] = None
            if created:
                self._players.record_username(session, pid, username, at)
            elif player.current_username != username:
                previous_username = player.current_username
                player.current_username = username
                self._players.record_username(session, pid, username, at)

            if skin is not None:
                player.current_skin = skin

            was_online = player.is_online
            player.server_id = placement.server_id
            player.fleet_name = placement.fleet_name
            player.proxy_id = placement.proxy_id

            if open_session is None:
                await self._ledger.open(session, pid, at)
            elif not was_online:
                self.log.warning(
                    "Offline player had an open session; reusing it",
                    extra={"player_id": str(pid), "session_id": str(open_session.id)},
                )

        outcome = ConnectOutcome(
            created=created,
            refreshed=was_online,
            username_changed=previous_username is not None,
            previous_username=previous_username,
        )

        self.log_operation(
            "player_connect",
            player_id=str(pid),
            server_id=placement.server_id,
            fleet_name=placement.fleet_name,
            player_created=created,
            refreshed=was_online,
        )

        await self.emit_event(
            PLAYER_CONNECTED,
            {
                "player_id": str(pid),
                "username": username,
                "server_id": placement.server_id,
                "fleet_name": placement.fleet_name,
                "proxy_id": placement.proxy_id,
                "first_login": created,
                "refreshed": was_online,
            },
        )
        if previous_username is not None:
            await self.emit_event(
                PLAYER_USERNAME_CHANGED,
                {"player_id": str(pid), "old_username": previous_username, "new_username": username},
            )

        return outcome

    @staticmethod
    def _superseded_by(player: Player, open_session: Optional[LoginSession], at: datetime) -> Optional[datetime]:
        """Time of the newer state that makes a Connect at `at` stale, if any."""
        at = ensure_utc(at)
        if player.is_online:
            if open_session is not None and at < ensure_utc(open_session.login_time):
                return ensure_utc(open_session.login_time)
            return None
        last_online = ensure_utc(player.last_online)
        return last_online if at <= last_online else None

    # ========================================================================
    # Disconnect
    # ========================================================================

    async def disconnect(self, player_id: Any, username: str, at: datetime) -> Optional[DisconnectOutcome]:
        """
        Take a player offline.

        Returns None without mutating anything when the player is unknown,
        has no open session, or the Disconnect is older than that session.
        """
        pid = self.parse_player_id(player_id)

        async with DatabaseService.get_transaction() as session:
            player = await self._players.get_for_update(session, pid)
            if player is None:
                self.log.warning(
                    "Disconnect for unknown player ignored",
                    extra={"player_id": str(pid), "username": username},
                )
                return None

            closed = await self._ledger.close(session, pid, at)
            if closed is None:
                self.log.warning(
                    "Disconnect without an open session; playtime unchanged",
                    extra={"player_id": str(pid), "username": username},
                )
                return None
            if isinstance(closed, StaleLogout):
                self.log.warning(
                    "Stale disconnect ignored; the open session started later",
                    extra={
                        "player_id": str(pid),
                        "session_id": str(closed.session_id),
                        "login_time": closed.login_time.isoformat(),
                        "event_time": closed.logout_time.isoformat(),
                    },
                )
                return None

            total = player.total_playtime_ms + closed.duration_ms
            await self._players.mark_offline(session, pid, closed.duration_ms, at)

        self.log_operation(
            "player_disconnect",
            player_id=str(pid),
            duration_ms=closed.duration_ms,
            session_id=str(closed.session_id),
        )

        await self.emit_event(
            PLAYER_DISCONNECTED,
            {
                "player_id": str(pid),
                "username": username,
                "session_id": str(closed.session_id),
                "duration_ms": closed.duration_ms,
            },
        )
        return DisconnectOutcome(duration_ms=closed.duration_ms, total_playtime_ms=total)

    # ========================================================================
    # Server switch
    # ========================================================================

    async def switch_server(self, player_id: Any, new_server_id: str) -> bool:
        """
        Update placement for an online player. Returns False for an offline
        or unknown player, which is left untouched.
        """
        pid = self.parse_player_id(player_id)
        placement = Placement.for_server(self.validate_non_empty(new_server_id, "new_server_id"))

        async with DatabaseService.get_transaction() as session:
            moved = await self._players.switch_server(session, pid, placement)

        if not moved:
            self.log.info(
                "Server switch for offline player ignored",
                extra={"player_id": str(pid), "server_id": placement.server_id},
            )
            return False

        self.log_operation(
            "player_server_switch",
            player_id=str(pid),
            server_id=placement.server_id,
            fleet_name=placement.fleet_name,
        )
        await self.emit_event(
            PLAYER_SERVER_SWITCHED,
            {
                "player_id": str(pid),
                "server_id": placement.server_id,
                "fleet_name": placement.fleet_name,
            },
        )
        return True
