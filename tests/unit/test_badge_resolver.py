"""
Unit tests for BadgeResolver.

Test Coverage
-------------
- Required badges become active on grant
- Non-required grants leave the active badge alone
- AlreadyOwned / NotOwned conflicts leave state unchanged
- Removing the active badge reassigns it
- Explicit active badge override
- Role-change grants and revocations
"""

import uuid

import pytest

from presence.core.database.service import DatabaseService
from presence.core.event.types import BADGE_ACTIVE_CHANGED, BADGE_ADDED, BADGE_REMOVED
from presence.database.models import Player
from presence.modules.shared.exceptions import (
    BadgeAlreadyOwnedError,
    BadgeNotOwnedError,
    NotFoundError,
    UnknownBadgeError,
)
from tests.factories import LOBBY, at, new_player_id


async def badge_state(player_id: str) -> tuple[list[str], str | None]:
    async with DatabaseService.get_session() as session:
        player = await session.get(Player, uuid.UUID(player_id))
    assert player is not None
    return player.badge_ids, player.active_badge_id


@pytest.fixture
async def player_id(presence) -> str:
    pid = new_player_id()
    await presence.connect(pid, "Steve", LOBBY, at(0))
    return pid


@pytest.mark.unit
class TestAddBadge:
    async def test_required_badge_becomes_active(self, resolver, player_id):
        active = await resolver.add_badge(player_id, "vip")

        assert active == "vip"
        assert await badge_state(player_id) == (["vip"], "vip")

    async def test_non_required_badge_not_activated(self, resolver, player_id):
        active = await resolver.add_badge(player_id, "beta")

        assert active is None
        assert await badge_state(player_id) == (["beta"], None)

    async def test_higher_priority_required_badge_takes_over(self, resolver, player_id):
        await resolver.add_badge(player_id, "vip")

        active = await resolver.add_badge(player_id, "staff")

        assert active == "staff"

    async def test_already_owned_conflict_leaves_state(self, resolver, player_id):
        await resolver.add_badge(player_id, "vip")

        with pytest.raises(BadgeAlreadyOwnedError):
            await resolver.add_badge(player_id, "vip")

        assert await badge_state(player_id) == (["vip"], "vip")

    async def test_unknown_badge_rejected(self, resolver, player_id):
        with pytest.raises(UnknownBadgeError):
            await resolver.add_badge(player_id, "does-not-exist")

    async def test_unknown_player_rejected(self, resolver, database):
        with pytest.raises(NotFoundError):
            await resolver.add_badge(new_player_id(), "vip")


@pytest.mark.unit
class TestRemoveBadge:
    async def test_removing_active_badge_reassigns(self, resolver, player_id):
        await resolver.add_badge(player_id, "vip")
        await resolver.add_badge(player_id, "staff")

        active = await resolver.remove_badge(player_id, "staff")

        assert active == "vip"
        assert await badge_state(player_id) == (["vip"], "vip")

    async def test_removing_last_badge_clears_active(self, resolver, player_id):
        await resolver.add_badge(player_id, "vip")

        active = await resolver.remove_badge(player_id, "vip")

        assert active is None
        assert await badge_state(player_id) == ([], None)

    async def test_removing_inactive_badge_keeps_active(self, resolver, player_id):
        await resolver.add_badge(player_id, "vip")
        await resolver.add_badge(player_id, "beta")

        active = await resolver.remove_badge(player_id, "beta")

        assert active == "vip"

    async def test_not_owned_conflict(self, resolver, player_id):
        with pytest.raises(BadgeNotOwnedError):
            await resolver.remove_badge(player_id, "vip")


@pytest.mark.unit
class TestActiveBadge:
    async def test_set_active_overrides_priority(self, resolver, player_id):
        await resolver.add_badge(player_id, "vip")
        await resolver.add_badge(player_id, "beta")

        await resolver.set_active(player_id, "beta")

        assert await badge_state(player_id) == (["beta", "vip"], "beta")

    async def test_set_active_requires_ownership(self, resolver, player_id):
        with pytest.raises(BadgeNotOwnedError):
            await resolver.set_active(player_id, "vip")

    async def test_recompute_restores_priority_choice(self, resolver, player_id):
        await resolver.add_badge(player_id, "vip")
        await resolver.add_badge(player_id, "beta")
        await resolver.set_active(player_id, "beta")

        active = await resolver.recompute_active(player_id)

        assert active == "vip"

    async def test_equal_priority_tie_is_deterministic(self, resolver, player_id):
        await resolver.add_badge(player_id, "supporter")
        active = await resolver.add_badge(player_id, "donor")

        assert active == "donor"


@pytest.mark.unit
class TestRoleChange:
    async def test_role_swap_moves_active_badge(self, resolver, player_id):
        # Arrange
        await resolver.apply_role_change(player_id, "donor-role", added=True)
        assert (await badge_state(player_id))[1] == "donor"

        # Act
        await resolver.apply_role_change(player_id, "donor-role", added=False)
        await resolver.apply_role_change(player_id, "supporter-role", added=True)

        # Assert
        assert await badge_state(player_id) == (["supporter"], "supporter")

    async def test_unmapped_role_ignored(self, resolver, player_id):
        assert await resolver.apply_role_change(player_id, "unmapped", added=True) is None
        assert await badge_state(player_id) == ([], None)

    async def test_role_revocation_without_badge_conflicts(self, resolver, player_id):
        with pytest.raises(BadgeNotOwnedError):
            await resolver.apply_role_change(player_id, "vip", added=False)


@pytest.mark.unit
class TestBadgeEvents:
    async def test_events_follow_commits(self, resolver, player_id, recorded_events):
        await resolver.add_badge(player_id, "vip")
        await resolver.remove_badge(player_id, "vip")

        assert [name for name, _ in recorded_events if name.startswith("badge.")] == [
            BADGE_ADDED,
            BADGE_ACTIVE_CHANGED,
            BADGE_REMOVED,
            BADGE_ACTIVE_CHANGED,
        ]
        changes = [payload for name, payload in recorded_events if name == BADGE_ACTIVE_CHANGED]
        assert changes[0]["new_badge_id"] == "vip"
        assert changes[1] == {"player_id": player_id, "old_badge_id": "vip", "new_badge_id": None}

    async def test_conflict_publishes_nothing(self, resolver, player_id, recorded_events):
        await resolver.add_badge(player_id, "beta")
        recorded_events.clear()

        with pytest.raises(BadgeAlreadyOwnedError):
            await resolver.add_badge(player_id, "beta")

        assert recorded_events == []
