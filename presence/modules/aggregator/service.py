"""
Presence Aggregator

Online counts and listings scoped by server or fleet. No scope means
global. Listings are paginated; they are meant for operator tooling and
lobby views, not for walking very large populations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Type

from presence.core.database.service import DatabaseService
from presence.core.logging.logger import get_logger
from presence.database.models import Player
from presence.modules.player.repository import PlayerRepository
from presence.modules.shared.base_service import BaseService
from presence.modules.shared.pagination import Page, PageData, Pageable

if TYPE_CHECKING:
    from presence.core.config.config_manager import ConfigManager
    from presence.core.event.bus import EventBus

logger = get_logger(__name__)


@dataclass(frozen=True)
class OnlinePlayer:
    player_id: str
    username: str
    server_id: str
    fleet_name: Optional[str]
    proxy_id: Optional[str]

    @classmethod
    def from_model(cls, player: Player) -> OnlinePlayer:
        assert player.server_id is not None
        return cls(
            player_id=str(player.id),
            username=player.current_username,
            server_id=player.server_id,
            fleet_name=player.fleet_name,
            proxy_id=player.proxy_id,
        )


class PresenceAggregator(BaseService):
    def __init__(
        self,
        config_manager: Type[ConfigManager],
        event_bus: EventBus,
        players: Optional[PlayerRepository] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._players = players or PlayerRepository()

    def _default_page_size(self) -> int:
        return self._config.get_int("presence.online.default_page_size", 100)

    async def count_online(
        self,
        server_id: Optional[str] = None,
        fleet_names: Optional[Sequence[str]] = None,
    ) -> int:
        async with DatabaseService.get_session() as session:
            return await self._players.count(
                session, *self._players.online_scope(server_id, fleet_names)
            )

    async def list_online(
        self,
        server_id: Optional[str] = None,
        fleet_names: Optional[Sequence[str]] = None,
        pageable: Optional[Pageable] = None,
    ) -> Page[OnlinePlayer]:
        pageable = (pageable or Pageable()).validate()
        size = pageable.resolved_size(self._default_page_size())
        scope = self._players.online_scope(server_id, fleet_names)

        async with DatabaseService.get_session() as session:
            total = await self._players.count(session, *scope)
            players = await self._players.find_many_where(
                session,
                *scope,
                order_by=[Player.current_username, Player.id],
                offset=pageable.offset(size),
                limit=size,
            )

        items = [OnlinePlayer.from_model(player) for player in players]
        return Page(items=items, page_data=PageData.build(pageable.page, len(items), total, size))

    async def count_by_fleet(self, fleet_names: Sequence[str]) -> Dict[str, int]:
        """Counts for the requested fleets; fleets without players report 0."""
        async with DatabaseService.get_session() as session:
            counts = await self._players.count_by_fleet(session, fleet_names)
        return {fleet: counts.get(fleet, 0) for fleet in fleet_names}

    async def count_all_fleets(self) -> Dict[str, int]:
        async with DatabaseService.get_session() as session:
            return await self._players.count_by_fleet(session)

    async def servers_for(self, player_ids: Sequence[str]) -> Dict[str, OnlinePlayer]:
        """Placement of each online player in `player_ids`; offline ones are omitted."""
        pids = [self.parse_player_id(pid, "player_ids") for pid in player_ids]
        async with DatabaseService.get_session() as session:
            players = await self._players.get_many(session, pids)
        return {str(p.id): OnlinePlayer.from_model(p) for p in players if p.is_online}

    async def players_on_server(self, server_id: str) -> List[OnlinePlayer]:
        self.validate_non_empty(server_id, "server_id")
        async with DatabaseService.get_session() as session:
            players = await self._players.find_many_where(
                session,
                *self._players.online_scope(server_id=server_id),
                order_by=[Player.current_username, Player.id],
            )
        return [OnlinePlayer.from_model(player) for player in players]
