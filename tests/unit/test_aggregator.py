"""
Unit tests for PresenceAggregator: online counts, fleet counts and listings.
"""

import pytest

from presence.modules.shared.exceptions import ValidationError
from presence.modules.shared.pagination import Pageable
from tests.factories import LOBBY, LOBBY_2, MINIGAMES, SURVIVAL, at, new_player_id


@pytest.fixture
async def population(presence) -> dict[str, str]:
    """Four online players across three fleets plus one offline player."""
    players = {
        "alice": new_player_id(),
        "bob": new_player_id(),
        "carol": new_player_id(),
        "dave": new_player_id(),
        "erin": new_player_id(),
    }
    await presence.connect(players["alice"], "alice", LOBBY, at(0))
    await presence.connect(players["bob"], "bob", LOBBY_2, at(0))
    await presence.connect(players["carol"], "carol", SURVIVAL, at(0))
    await presence.connect(players["dave"], "dave", MINIGAMES, at(0))
    await presence.connect(players["erin"], "erin", LOBBY, at(0))
    await presence.disconnect(players["erin"], "erin", at(10))
    return players


@pytest.mark.unit
class TestCounts:
    async def test_count_online_total(self, aggregator, population):
        assert await aggregator.count_online() == 4

    async def test_count_online_by_server(self, aggregator, population):
        assert await aggregator.count_online(server_id=LOBBY) == 1

    async def test_count_online_by_fleets(self, aggregator, population):
        assert await aggregator.count_online(fleet_names=["lobby", "survival"]) == 3

    async def test_count_by_fleet_fills_missing_with_zero(self, aggregator, population):
        counts = await aggregator.count_by_fleet(["lobby", "mini-games-lobby", "creative"])

        assert counts == {"lobby": 2, "mini-games-lobby": 1, "creative": 0}

    async def test_count_all_fleets(self, aggregator, population):
        assert await aggregator.count_all_fleets() == {
            "lobby": 2,
            "survival": 1,
            "mini-games-lobby": 1,
        }

    async def test_empty_store(self, aggregator):
        assert await aggregator.count_online() == 0
        assert await aggregator.count_all_fleets() == {}


@pytest.mark.unit
class TestListings:
    async def test_list_online_paginates(self, aggregator, population):
        first = await aggregator.list_online(pageable=Pageable(page=0, size=3))
        second = await aggregator.list_online(pageable=Pageable(page=1, size=3))

        assert [p.username for p in first.items] == ["alice", "bob", "carol"]
        assert [p.username for p in second.items] == ["dave"]
        assert first.page_data.total_elements == 4
        assert first.page_data.total_pages == 2
        assert second.page_data.size == 1

    async def test_list_online_default_page_size(self, aggregator, population):
        page = await aggregator.list_online()

        assert len(page.items) == 4
        assert page.page_data.total_pages == 1

    async def test_list_online_rejects_negative_page(self, aggregator, population):
        with pytest.raises(ValidationError):
            await aggregator.list_online(pageable=Pageable(page=-1))

    async def test_players_on_server(self, aggregator, population):
        players = await aggregator.players_on_server(LOBBY_2)

        assert [p.player_id for p in players] == [population["bob"]]
        assert players[0].fleet_name == "lobby"

    async def test_servers_for_omits_offline(self, aggregator, population):
        placements = await aggregator.servers_for(
            [population["alice"], population["erin"], new_player_id()]
        )

        assert list(placements) == [population["alice"]]
        assert placements[population["alice"]].server_id == LOBBY
