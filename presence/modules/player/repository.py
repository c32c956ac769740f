"""
Player record data access.

Purpose
-------
All reads and writes against `players` and `username_history`. Mutations
that must be race-free across workers are single SQL statements:

- insert_if_absent: INSERT ... ON CONFLICT (id) DO NOTHING
- mark_offline: in-SQL playtime increment plus placement clear
- switch_server: UPDATE ... WHERE server_id IS NOT NULL
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import ColumnElement, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from presence.core.database.base import ensure_utc
from presence.core.logging.logger import get_logger
from presence.database.models import Player, UsernameHistory
from presence.modules.player.placement import Placement
from presence.modules.shared.base_repository import BaseRepository


class PlayerRepository(BaseRepository[Player]):
    def __init__(self) -> None:
        super().__init__(Player, get_logger(__name__))

    # ------------------------------------------------------------------ #
    # Presence mutations
    # ------------------------------------------------------------------ #

    async def insert_if_absent(
        self,
        session: AsyncSession,
        player_id: uuid.UUID,
        username: str,
        at: datetime,
        skin: Optional[str] = None,
    ) -> bool:
        """Create the player row unless it exists. Returns True if created."""
        at = ensure_utc(at)
        stmt = (
            self.insert_stmt(session)
            .values(
                id=player_id,
                current_username=username,
                current_skin=skin,
                first_login=at,
                last_online=at,
                total_playtime_ms=0,
            )
            .on_conflict_do_nothing(index_elements=["id"])
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def mark_offline(
        self,
        session: AsyncSession,
        player_id: uuid.UUID,
        duration_ms: int,
        at: datetime,
    ) -> None:
        stmt = (
            update(Player)
            .where(Player.id == player_id)
            .values(
                total_playtime_ms=Player.total_playtime_ms + duration_ms,
                server_id=None,
                proxy_id=None,
                fleet_name=None,
                last_online=ensure_utc(at),
            )
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)

    async def switch_server(
        self,
        session: AsyncSession,
        player_id: uuid.UUID,
        placement: Placement,
    ) -> bool:
        """Move an online player. Returns False (and changes nothing) if offline."""
        stmt = (
            update(Player)
            .where(Player.id == player_id, Player.server_id.is_not(None))
            .values(server_id=placement.server_id, fleet_name=placement.fleet_name)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    def record_username(
        self,
        session: AsyncSession,
        player_id: uuid.UUID,
        username: str,
        at: datetime,
    ) -> UsernameHistory:
        entry = UsernameHistory(
            id=uuid.uuid4(),
            player_id=player_id,
            username=username,
            created_at=ensure_utc(at),
        )
        session.add(entry)
        return entry

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    async def find_by_username(
        self,
        session: AsyncSession,
        username: str,
        *,
        case_insensitive: bool = True,
    ) -> Optional[Player]:
        if case_insensitive:
            condition = func.lower(Player.current_username) == username.lower()
        else:
            condition = Player.current_username == username
        return await self.find_one_where(session, condition)

    def _search_conditions(
        self,
        prefix: str,
        online_only: bool,
        exclude_ids: Sequence[uuid.UUID],
    ) -> List[ColumnElement[bool]]:
        conditions: List[ColumnElement[bool]] = [
            func.lower(Player.current_username).startswith(prefix.lower(), autoescape=True)
        ]
        if online_only:
            conditions.append(Player.server_id.is_not(None))
        if exclude_ids:
            conditions.append(Player.id.not_in(list(exclude_ids)))
        return conditions

    async def search_by_username(
        self,
        session: AsyncSession,
        prefix: str,
        *,
        offset: int,
        limit: int,
        online_only: bool = False,
        exclude_ids: Sequence[uuid.UUID] = (),
    ) -> List[Player]:
        return await self.find_many_where(
            session,
            *self._search_conditions(prefix, online_only, exclude_ids),
            order_by=[Player.current_username, Player.id],
            offset=offset,
            limit=limit,
        )

    async def count_search(
        self,
        session: AsyncSession,
        prefix: str,
        *,
        online_only: bool = False,
        exclude_ids: Sequence[uuid.UUID] = (),
    ) -> int:
        return await self.count(session, *self._search_conditions(prefix, online_only, exclude_ids))

    # ------------------------------------------------------------------ #
    # Placement scopes
    # ------------------------------------------------------------------ #

    @staticmethod
    def online_scope(
        server_id: Optional[str] = None,
        fleet_names: Optional[Sequence[str]] = None,
    ) -> List[ColumnElement[bool]]:
        conditions: List[ColumnElement[bool]] = [Player.server_id.is_not(None)]
        if server_id:
            conditions.append(Player.server_id == server_id)
        if fleet_names:
            conditions.append(Player.fleet_name.in_(list(fleet_names)))
        return conditions

    async def count_by_fleet(
        self,
        session: AsyncSession,
        fleet_names: Optional[Sequence[str]] = None,
    ) -> Dict[str, int]:
        stmt = (
            select(Player.fleet_name, func.count())
            .where(*self.online_scope(fleet_names=fleet_names))
            .group_by(Player.fleet_name)
        )
        result = await session.execute(stmt)
        return {fleet: count for fleet, count in result.all() if fleet is not None}

    # ------------------------------------------------------------------ #
    # Stats
    # ------------------------------------------------------------------ #

    async def total_playtime_ms(self, session: AsyncSession) -> int:
        result = await session.execute(select(func.coalesce(func.sum(Player.total_playtime_ms), 0)))
        return int(result.scalar_one())

    async def usernames_for(self, session: AsyncSession, player_id: uuid.UUID) -> List[UsernameHistory]:
        stmt = (
            select(UsernameHistory)
            .where(UsernameHistory.player_id == player_id)
            .order_by(UsernameHistory.created_at, UsernameHistory.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
