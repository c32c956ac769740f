"""
Unit tests for PresenceStateMachine.

Test Coverage
-------------
- First connect creates the player and opens a session
- Disconnect closes the session and accumulates playtime
- Duplicate connect refreshes placement without a second session
- Disconnect without an open session, and for unknown players
- Server switch for online and offline players
- Username history and change events
- Late and redelivered Connect/Disconnect leave newer state alone
- Placement and the open session stay in step across a replayed sequence

Testing Strategy
----------------
- Real SQLite database per test (see conftest `database`)
- Real EventBus with a recording listener
"""

import uuid

import pytest

from presence.core.database.service import DatabaseService
from presence.core.event.types import (
    PLAYER_CONNECTED,
    PLAYER_DISCONNECTED,
    PLAYER_SERVER_SWITCHED,
    PLAYER_USERNAME_CHANGED,
)
from presence.database.models import LoginSession, Player
from presence.modules.player.repository import PlayerRepository
from presence.modules.session.repository import SessionRepository
from presence.modules.shared.exceptions import ValidationError
from tests.factories import LOBBY, LOBBY_2, SURVIVAL, at, new_player_id


async def load_player(player_id: str) -> Player:
    async with DatabaseService.get_session() as session:
        player = await session.get(Player, uuid.UUID(player_id))
    assert player is not None
    return player


async def load_sessions(player_id: str) -> list[LoginSession]:
    async with DatabaseService.get_session() as session:
        return await SessionRepository().list_for_player(
            session, uuid.UUID(player_id), offset=0, limit=100
        )


# ============================================================================
# CONNECT / DISCONNECT
# ============================================================================


@pytest.mark.unit
class TestConnectDisconnect:
    async def test_first_connect_creates_online_player(self, presence):
        # Arrange
        pid = new_player_id()

        # Act
        outcome = await presence.connect(pid, "Steve", LOBBY, at(0), proxy_id="proxy-1")

        # Assert
        assert outcome.created is True
        assert outcome.refreshed is False

        player = await load_player(pid)
        assert player.current_username == "Steve"
        assert player.server_id == LOBBY
        assert player.fleet_name == "lobby"
        assert player.proxy_id == "proxy-1"
        assert player.first_login == at(0)
        assert player.total_playtime_ms == 0

        sessions = await load_sessions(pid)
        assert len(sessions) == 1
        assert sessions[0].logout_time is None

    async def test_disconnect_accumulates_playtime(self, presence):
        pid = new_player_id()
        await presence.connect(pid, "Steve", LOBBY, at(0))

        outcome = await presence.disconnect(pid, "Steve", at(100))

        assert outcome is not None
        assert outcome.duration_ms == 100
        assert outcome.total_playtime_ms == 100

        player = await load_player(pid)
        assert player.is_online is False
        assert player.server_id is None
        assert player.fleet_name is None
        assert player.proxy_id is None
        assert player.total_playtime_ms == 100
        assert player.last_online == at(100)

        sessions = await load_sessions(pid)
        assert sessions[0].logout_time == at(100)

    async def test_playtime_sums_across_sessions(self, presence):
        pid = new_player_id()

        await presence.connect(pid, "Steve", LOBBY, at(0))
        await presence.disconnect(pid, "Steve", at(1_000))
        await presence.connect(pid, "Steve", SURVIVAL, at(5_000))
        outcome = await presence.disconnect(pid, "Steve", at(7_500))

        assert outcome.total_playtime_ms == 3_500
        player = await load_player(pid)
        assert player.total_playtime_ms == 3_500
        assert player.first_login == at(0)
        assert len(await load_sessions(pid)) == 2

    async def test_duplicate_connect_keeps_single_open_session(self, presence):
        pid = new_player_id()
        await presence.connect(pid, "Steve", LOBBY, at(0))

        outcome = await presence.connect(pid, "Steve", SURVIVAL, at(50))

        assert outcome.created is False
        assert outcome.refreshed is True
        player = await load_player(pid)
        assert player.server_id == SURVIVAL
        assert player.fleet_name == "survival"

        sessions = await load_sessions(pid)
        assert len(sessions) == 1
        assert sessions[0].login_time == at(0)

    async def test_disconnect_without_open_session_is_noop(self, presence):
        pid = new_player_id()
        await presence.connect(pid, "Steve", LOBBY, at(0))
        await presence.disconnect(pid, "Steve", at(100))

        outcome = await presence.disconnect(pid, "Steve", at(200))

        assert outcome is None
        player = await load_player(pid)
        assert player.total_playtime_ms == 100
        assert player.last_online == at(100)

    async def test_disconnect_unknown_player_is_noop(self, presence):
        outcome = await presence.disconnect(new_player_id(), "Ghost", at(0))

        assert outcome is None

    async def test_disconnect_older_than_open_session_is_ignored(self, presence, recorded_events):
        pid = new_player_id()
        await presence.connect(pid, "Steve", LOBBY, at(1_000))

        outcome = await presence.disconnect(pid, "Steve", at(0))

        assert outcome is None
        player = await load_player(pid)
        assert player.server_id == LOBBY
        assert player.total_playtime_ms == 0
        assert [s.logout_time for s in await load_sessions(pid)] == [None]
        assert [name for name, _ in recorded_events] == [PLAYER_CONNECTED]

    async def test_redelivered_disconnect_keeps_newer_session_open(self, presence):
        # Arrange
        pid = new_player_id()
        await presence.connect(pid, "Steve", LOBBY, at(0))
        await presence.disconnect(pid, "Steve", at(100_000))
        await presence.connect(pid, "Steve", SURVIVAL, at(200_000))

        # Act
        outcome = await presence.disconnect(pid, "Steve", at(100_000))

        # Assert
        assert outcome is None
        player = await load_player(pid)
        assert player.server_id == SURVIVAL
        assert player.total_playtime_ms == 100_000
        assert player.last_online == at(100_000)
        open_sessions = [s for s in await load_sessions(pid) if s.logout_time is None]
        assert [s.login_time for s in open_sessions] == [at(200_000)]

    async def test_redelivered_connect_after_disconnect_is_ignored(self, presence, recorded_events):
        pid = new_player_id()
        await presence.connect(pid, "Steve", LOBBY, at(0))
        await presence.disconnect(pid, "Steve", at(100))

        outcome = await presence.connect(pid, "Alex", LOBBY, at(0))

        assert outcome.stale is True
        player = await load_player(pid)
        assert player.server_id is None
        assert player.current_username == "Steve"
        assert all(s.logout_time is not None for s in await load_sessions(pid))
        assert [name for name, _ in recorded_events] == [PLAYER_CONNECTED, PLAYER_DISCONNECTED]

    async def test_connect_older_than_open_session_is_ignored(self, presence):
        pid = new_player_id()
        await presence.connect(pid, "Steve", LOBBY, at(0))
        await presence.disconnect(pid, "Steve", at(100))
        await presence.connect(pid, "Steve", SURVIVAL, at(500))

        outcome = await presence.connect(pid, "Steve", LOBBY, at(200))

        assert outcome.stale is True
        assert (await load_player(pid)).server_id == SURVIVAL

    async def test_invalid_server_id_rejected_before_writing(self, presence):
        pid = new_player_id()

        with pytest.raises(ValidationError):
            await presence.connect(pid, "Steve", "lobby", at(0))

        async with DatabaseService.get_session() as session:
            assert await session.get(Player, uuid.UUID(pid)) is None

    async def test_invalid_player_id_rejected(self, presence):
        with pytest.raises(ValidationError):
            await presence.connect("not-a-uuid", "Steve", LOBBY, at(0))


# ============================================================================
# SERVER SWITCH
# ============================================================================


@pytest.mark.unit
class TestServerSwitch:
    async def test_switch_moves_online_player(self, presence):
        pid = new_player_id()
        await presence.connect(pid, "Steve", LOBBY, at(0), proxy_id="proxy-1")

        moved = await presence.switch_server(pid, SURVIVAL)

        assert moved is True
        player = await load_player(pid)
        assert player.server_id == SURVIVAL
        assert player.fleet_name == "survival"
        assert player.proxy_id == "proxy-1"
        assert len(await load_sessions(pid)) == 1

    async def test_switch_ignored_for_offline_player(self, presence):
        pid = new_player_id()
        await presence.connect(pid, "Steve", LOBBY, at(0))
        await presence.disconnect(pid, "Steve", at(10))

        moved = await presence.switch_server(pid, LOBBY_2)

        assert moved is False
        player = await load_player(pid)
        assert player.server_id is None
        assert player.fleet_name is None

    async def test_switch_ignored_for_unknown_player(self, presence):
        assert await presence.switch_server(new_player_id(), LOBBY_2) is False


# ============================================================================
# USERNAMES AND EVENTS
# ============================================================================


@pytest.mark.unit
class TestUsernamesAndEvents:
    async def test_username_change_recorded(self, presence):
        pid = new_player_id()
        await presence.connect(pid, "Steve", LOBBY, at(0))
        await presence.disconnect(pid, "Steve", at(10))

        outcome = await presence.connect(pid, "Alex", LOBBY, at(20))

        assert outcome.username_changed is True
        assert outcome.previous_username == "Steve"
        async with DatabaseService.get_session() as session:
            history = await PlayerRepository().usernames_for(session, uuid.UUID(pid))
        assert [entry.username for entry in history] == ["Steve", "Alex"]
        assert (await load_player(pid)).current_username == "Alex"

    async def test_same_username_not_recorded_twice(self, presence):
        pid = new_player_id()
        await presence.connect(pid, "Steve", LOBBY, at(0))
        await presence.disconnect(pid, "Steve", at(10))
        await presence.connect(pid, "Steve", LOBBY, at(20))

        async with DatabaseService.get_session() as session:
            history = await PlayerRepository().usernames_for(session, uuid.UUID(pid))
        assert len(history) == 1

    async def test_events_published_after_each_transition(self, presence, recorded_events):
        pid = new_player_id()

        await presence.connect(pid, "Steve", LOBBY, at(0))
        await presence.switch_server(pid, SURVIVAL)
        await presence.disconnect(pid, "Steve", at(100))
        await presence.connect(pid, "Alex", LOBBY, at(200))

        names = [name for name, _ in recorded_events]
        assert names == [
            PLAYER_CONNECTED,
            PLAYER_SERVER_SWITCHED,
            PLAYER_DISCONNECTED,
            PLAYER_CONNECTED,
            PLAYER_USERNAME_CHANGED,
        ]
        assert recorded_events[0][1]["first_login"] is True
        assert recorded_events[2][1]["duration_ms"] == 100
        assert recorded_events[4][1] == {
            "player_id": pid,
            "old_username": "Steve",
            "new_username": "Alex",
        }


# ============================================================================
# DELIVERY ORDER
# ============================================================================


async def placement_matches_open_session(player_id: str) -> bool:
    async with DatabaseService.get_session() as session:
        player = await session.get(Player, uuid.UUID(player_id))
        open_session = await SessionRepository().find_open(session, uuid.UUID(player_id))
    online = player is not None and player.server_id is not None
    return online is (open_session is not None)


@pytest.mark.unit
class TestDeliveryOrder:
    async def test_placement_tracks_open_session_under_redelivery(self, presence):
        # Arrange: in-order, duplicated and late events for one player
        pid = new_player_id()
        steps = [
            ("connect", LOBBY, 0),
            ("connect", LOBBY, 0),
            ("switch", SURVIVAL, None),
            ("disconnect", None, 100_000),
            ("disconnect", None, 100_000),
            ("switch", LOBBY_2, None),
            ("connect", LOBBY, 0),
            ("connect", LOBBY_2, 200_000),
            ("disconnect", None, 100_000),
            ("connect", LOBBY, 150_000),
            ("switch", SURVIVAL, None),
            ("disconnect", None, 300_000),
            ("connect", LOBBY_2, 200_000),
            ("disconnect", None, 300_000),
            ("connect", LOBBY, 400_000),
        ]
        expected_online = [
            True, True, True, False, False, False, False,
            True, True, True, True, False, False, False, True,
        ]

        # Act / Assert
        for (kind, server_id, ms), online in zip(steps, expected_online):
            if kind == "connect":
                await presence.connect(pid, "Steve", server_id, at(ms))
            elif kind == "disconnect":
                await presence.disconnect(pid, "Steve", at(ms))
            else:
                await presence.switch_server(pid, server_id)

            assert await placement_matches_open_session(pid), (kind, server_id, ms)
            assert (await load_player(pid)).is_online is online, (kind, server_id, ms)

        player = await load_player(pid)
        assert player.server_id == LOBBY
        assert player.total_playtime_ms == 100_000 + 100_000
        assert player.last_online == at(300_000)
        sessions = await load_sessions(pid)
        assert [s.login_time for s in sessions] == [at(400_000), at(200_000), at(0)]
