"""
Login session data access.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from presence.core.logging.logger import get_logger
from presence.database.models import LoginSession
from presence.modules.shared.base_repository import BaseRepository


class SessionRepository(BaseRepository[LoginSession]):
    def __init__(self) -> None:
        super().__init__(LoginSession, get_logger(__name__))

    async def find_open(
        self,
        session: AsyncSession,
        player_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Optional[LoginSession]:
        return await self.find_one_where(
            session,
            LoginSession.player_id == player_id,
            LoginSession.logout_time.is_(None),
            for_update=for_update,
        )

    async def list_for_player(
        self,
        session: AsyncSession,
        player_id: uuid.UUID,
        *,
        offset: int,
        limit: int,
    ) -> List[LoginSession]:
        """Newest first."""
        return await self.find_many_where(
            session,
            LoginSession.player_id == player_id,
            order_by=[LoginSession.login_time.desc(), LoginSession.id],
            offset=offset,
            limit=limit,
        )

    async def count_for_player(self, session: AsyncSession, player_id: uuid.UUID) -> int:
        return await self.count(session, LoginSession.player_id == player_id)
