"""
Badge membership data access.

Membership changes are single statements so AlreadyOwned / NotOwned are
decided by the database, not by a prior read:

- add: INSERT ... ON CONFLICT (player_id, badge_id) DO NOTHING
- remove: DELETE ... WHERE player_id = ? AND badge_id = ?
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from presence.core.logging.logger import get_logger
from presence.database.models import Player, PlayerBadge
from presence.modules.shared.base_repository import BaseRepository


class BadgeRepository(BaseRepository[PlayerBadge]):
    def __init__(self) -> None:
        super().__init__(PlayerBadge, get_logger(__name__))

    async def add(self, session: AsyncSession, player_id: uuid.UUID, badge_id: str) -> bool:
        """Returns False when the player already owns the badge."""
        stmt = (
            self.insert_stmt(session)
            .values(player_id=player_id, badge_id=badge_id)
            .on_conflict_do_nothing(index_elements=["player_id", "badge_id"])
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def remove(self, session: AsyncSession, player_id: uuid.UUID, badge_id: str) -> bool:
        """Returns False when the player does not own the badge."""
        stmt = (
            delete(PlayerBadge)
            .where(PlayerBadge.player_id == player_id, PlayerBadge.badge_id == badge_id)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def owned_ids(self, session: AsyncSession, player_id: uuid.UUID) -> List[str]:
        stmt = (
            select(PlayerBadge.badge_id)
            .where(PlayerBadge.player_id == player_id)
            .order_by(PlayerBadge.badge_id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def owns(self, session: AsyncSession, player_id: uuid.UUID, badge_id: str) -> bool:
        return await self.exists(
            session,
            PlayerBadge.player_id == player_id,
            PlayerBadge.badge_id == badge_id,
        )

    async def set_active(
        self,
        session: AsyncSession,
        player_id: uuid.UUID,
        badge_id: Optional[str],
    ) -> None:
        stmt = (
            update(Player)
            .where(Player.id == player_id)
            .values(active_badge_id=badge_id)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
