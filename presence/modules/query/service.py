"""
Query Service

Purpose
-------
The synchronous query/command surface other backend services call: player
lookups, username search, login session history, badge reads and commands,
placement and count views, and global stats.

Responsibilities
----------------
- Validate identifiers before touching storage
- Bound every call with QUERY_TIMEOUT_SECONDS
- Surface domain failures unchanged (ValidationError, NotFoundError,
  ConflictError) and collapse storage failures and timeouts into
  UnavailableError

Callers translate exceptions with
`presence.modules.shared.exceptions.status_for`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Type,
    TypeVar,
)

from sqlalchemy.exc import SQLAlchemyError

from presence.core.config.config import Config
from presence.core.database.base import utc_now
from presence.core.database.service import DatabaseService
from presence.core.exceptions import UnavailableError
from presence.core.logging.logger import get_logger
from presence.database.models import LoginSession, Player
from presence.modules.aggregator.service import OnlinePlayer, PresenceAggregator
from presence.modules.badge.catalog import BadgeDefinition
from presence.modules.badge.service import BadgeResolver
from presence.modules.player.repository import PlayerRepository
from presence.modules.session.repository import SessionRepository
from presence.modules.shared.base_service import BaseService
from presence.modules.shared.exceptions import NotFoundError, PresenceDomainException
from presence.modules.shared.pagination import DEFAULT_PAGE_SIZE, Page, PageData, Pageable

if TYPE_CHECKING:
    from presence.core.config.config_manager import ConfigManager
    from presence.core.event.bus import EventBus

logger = get_logger(__name__)

R = TypeVar("R")

MILLIS_PER_HOUR = 3_600_000


# ============================================================================
# Views
# ============================================================================


@dataclass(frozen=True)
class PlayerView:
    player_id: str
    username: str
    skin: Optional[str]
    first_login: datetime
    last_online: datetime
    total_playtime_ms: int
    online: bool
    server_id: Optional[str]
    proxy_id: Optional[str]
    fleet_name: Optional[str]
    active_badge_id: Optional[str]
    badge_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_model(cls, player: Player) -> PlayerView:
        return cls(
            player_id=str(player.id),
            username=player.current_username,
            skin=player.current_skin,
            first_login=player.first_login,
            last_online=player.last_online,
            total_playtime_ms=player.total_playtime_ms,
            online=player.is_online,
            server_id=player.server_id,
            proxy_id=player.proxy_id,
            fleet_name=player.fleet_name,
            active_badge_id=player.active_badge_id,
            badge_ids=player.badge_ids,
        )


@dataclass(frozen=True)
class SessionView:
    session_id: str
    player_id: str
    login_time: datetime
    logout_time: Optional[datetime]
    duration_ms: int

    @classmethod
    def from_model(cls, login: LoginSession, now: datetime) -> SessionView:
        return cls(
            session_id=str(login.id),
            player_id=str(login.player_id),
            login_time=login.login_time,
            logout_time=login.logout_time,
            duration_ms=max(login.duration_ms(now=now), 0),
        )


@dataclass(frozen=True)
class PlayerBadgesView:
    badge_ids: List[str]
    active_badge_id: Optional[str]


# ============================================================================
# Service
# ============================================================================


class QueryService(BaseService):
    def __init__(
        self,
        config_manager: Type[ConfigManager],
        event_bus: EventBus,
        resolver: BadgeResolver,
        aggregator: PresenceAggregator,
        players: Optional[PlayerRepository] = None,
        sessions: Optional[SessionRepository] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._resolver = resolver
        self._aggregator = aggregator
        self._players = players or PlayerRepository()
        self._sessions = sessions or SessionRepository()
        self._timeout = timeout_seconds if timeout_seconds is not None else Config.QUERY_TIMEOUT_SECONDS

    async def _call(self, operation: str, factory: Callable[[], Awaitable[R]]) -> R:
        try:
            return await asyncio.wait_for(factory(), timeout=self._timeout)
        except PresenceDomainException:
            raise
        except asyncio.TimeoutError as exc:
            self.log_error(operation, exc, timeout_seconds=self._timeout)
            raise UnavailableError(operation, exc) from exc
        except (SQLAlchemyError, OSError) as exc:
            self.log_error(operation, exc)
            raise UnavailableError(operation, exc) from exc

    def _search_page_size(self, pageable: Pageable) -> int:
        default = self._config.get_int("presence.search.default_page_size", DEFAULT_PAGE_SIZE)
        return pageable.resolved_size(default)

    # ------------------------------------------------------------------ #
    # Players
    # ------------------------------------------------------------------ #

    async def get_player(self, player_id: Any) -> PlayerView:
        pid = self.parse_player_id(player_id)

        async def run() -> PlayerView:
            async with DatabaseService.get_session() as session:
                player = await self._players.get(session, pid)
            if player is None:
                raise NotFoundError("Player", str(pid))
            return PlayerView.from_model(player)

        return await self._call("get_player", run)

    async def get_players(self, player_ids: Sequence[Any]) -> List[PlayerView]:
        """Known players only; unknown IDs are omitted."""
        pids = [self.parse_player_id(pid, "player_ids") for pid in player_ids]

        async def run() -> List[PlayerView]:
            async with DatabaseService.get_session() as session:
                players = await self._players.get_many(session, pids)
            return [PlayerView.from_model(player) for player in players]

        return await self._call("get_players", run)

    async def get_player_by_username(self, username: str, case_insensitive: bool = True) -> PlayerView:
        self.validate_non_empty(username, "username")

        async def run() -> PlayerView:
            async with DatabaseService.get_session() as session:
                player = await self._players.find_by_username(
                    session, username, case_insensitive=case_insensitive
                )
            if player is None:
                raise NotFoundError("Player", username)
            return PlayerView.from_model(player)

        return await self._call("get_player_by_username", run)

    async def search_players_by_username(
        self,
        prefix: str,
        pageable: Optional[Pageable] = None,
        *,
        online_only: bool = False,
        exclude_ids: Sequence[Any] = (),
    ) -> Page[PlayerView]:
        pageable = (pageable or Pageable()).validate()
        excluded = [self.parse_player_id(pid, "excluded_player_ids") for pid in exclude_ids]
        size = self._search_page_size(pageable)

        async def run() -> Page[PlayerView]:
            async with DatabaseService.get_session() as session:
                total = await self._players.count_search(
                    session, prefix, online_only=online_only, exclude_ids=excluded
                )
                players = await self._players.search_by_username(
                    session,
                    prefix,
                    offset=pageable.offset(size),
                    limit=size,
                    online_only=online_only,
                    exclude_ids=excluded,
                )
            items = [PlayerView.from_model(player) for player in players]
            return Page(items=items, page_data=PageData.build(pageable.page, len(items), total, size))

        return await self._call("search_players_by_username", run)

    async def get_login_sessions(self, player_id: Any, pageable: Optional[Pageable] = None) -> Page[SessionView]:
        pid = self.parse_player_id(player_id)
        pageable = (pageable or Pageable()).validate()
        size = self._search_page_size(pageable)

        async def run() -> Page[SessionView]:
            async with DatabaseService.get_session() as session:
                if await self._players.get(session, pid) is None:
                    raise NotFoundError("Player", str(pid))
                total = await self._sessions.count_for_player(session, pid)
                rows = await self._sessions.list_for_player(
                    session, pid, offset=pageable.offset(size), limit=size
                )
            now = utc_now()
            items = [SessionView.from_model(row, now) for row in rows]
            return Page(items=items, page_data=PageData.build(pageable.page, len(items), total, size))

        return await self._call("get_login_sessions", run)

    # ------------------------------------------------------------------ #
    # Badges
    # ------------------------------------------------------------------ #

    def get_badges(self) -> List[BadgeDefinition]:
        return self._resolver.catalog.all()

    async def get_player_badges(self, player_id: Any) -> PlayerBadgesView:
        player = await self.get_player(player_id)
        return PlayerBadgesView(badge_ids=player.badge_ids, active_badge_id=player.active_badge_id)

    async def get_active_player_badge(self, player_id: Any) -> BadgeDefinition:
        player = await self.get_player(player_id)
        if player.active_badge_id is None:
            raise NotFoundError("ActiveBadge", player.player_id)
        definition = self._resolver.catalog.get(player.active_badge_id)
        if definition is None:
            raise NotFoundError("Badge", player.active_badge_id)
        return definition

    async def add_badge_to_player(self, player_id: Any, badge_id: str) -> Optional[str]:
        self.validate_non_empty(badge_id, "badge_id")
        return await self._call("add_badge_to_player", lambda: self._resolver.add_badge(player_id, badge_id))

    async def remove_badge_from_player(self, player_id: Any, badge_id: str) -> Optional[str]:
        self.validate_non_empty(badge_id, "badge_id")
        return await self._call(
            "remove_badge_from_player", lambda: self._resolver.remove_badge(player_id, badge_id)
        )

    async def set_active_player_badge(self, player_id: Any, badge_id: str) -> None:
        self.validate_non_empty(badge_id, "badge_id")
        await self._call("set_active_player_badge", lambda: self._resolver.set_active(player_id, badge_id))

    # ------------------------------------------------------------------ #
    # Placement and counts
    # ------------------------------------------------------------------ #

    async def get_player_servers(self, player_ids: Sequence[Any]) -> Dict[str, OnlinePlayer]:
        return await self._call("get_player_servers", lambda: self._aggregator.servers_for(player_ids))

    async def get_server_players(self, server_id: str) -> List[OnlinePlayer]:
        return await self._call("get_server_players", lambda: self._aggregator.players_on_server(server_id))

    async def get_player_count(
        self,
        server_id: Optional[str] = None,
        fleet_names: Optional[Sequence[str]] = None,
    ) -> int:
        return await self._call(
            "get_player_count", lambda: self._aggregator.count_online(server_id, fleet_names)
        )

    async def get_fleet_player_counts(self, fleet_names: Sequence[str]) -> Dict[str, int]:
        return await self._call(
            "get_fleet_player_counts", lambda: self._aggregator.count_by_fleet(fleet_names)
        )

    async def get_all_fleet_player_counts(self) -> Dict[str, int]:
        return await self._call("get_all_fleet_player_counts", self._aggregator.count_all_fleets)

    async def get_global_players_summary(
        self,
        server_id: Optional[str] = None,
        fleet_names: Optional[Sequence[str]] = None,
        pageable: Optional[Pageable] = None,
    ) -> Page[OnlinePlayer]:
        return await self._call(
            "get_global_players_summary",
            lambda: self._aggregator.list_online(server_id, fleet_names, pageable),
        )

    # ------------------------------------------------------------------ #
    # Stats
    # ------------------------------------------------------------------ #

    async def get_stat_total_unique_players(self) -> int:
        async def run() -> int:
            async with DatabaseService.get_session() as session:
                return await self._players.count(session)

        return await self._call("get_stat_total_unique_players", run)

    async def get_stat_total_playtime(self) -> int:
        """Total recorded playtime across all players, in whole hours."""

        async def run() -> int:
            async with DatabaseService.get_session() as session:
                total_ms = await self._players.total_playtime_ms(session)
            return total_ms // MILLIS_PER_HOUR

        return await self._call("get_stat_total_playtime", run)
