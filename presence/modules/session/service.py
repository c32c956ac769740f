"""
Session Ledger

Purpose
-------
Track connect-to-disconnect intervals and guarantee that a player never has
two open sessions at once.

Responsibilities
----------------
- Open a session at a timestamp
- Close the open session at a timestamp and report its duration
- Fetch the open session

Design Notes
------------
- Every method runs inside the caller's transaction. The presence state
  machine owns the transaction so the session row and the player row
  change together.
- The single-open-session guarantee comes from the partial unique index
  `uq_login_sessions_open_per_player`. A violation surfaces as
  DuplicateSessionError and rolls back the caller's transaction.
- Closed sessions are never modified again.
- A logout older than the open session's login belongs to an earlier
  session (redelivered or reordered). It is reported as StaleLogout and
  changes nothing.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from presence.core.database.base import ensure_utc
from presence.core.logging.logger import get_logger
from presence.database.models import LoginSession
from presence.modules.session.repository import SessionRepository
from presence.modules.shared.exceptions import DuplicateSessionError

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClosedSession:
    session_id: uuid.UUID
    login_time: datetime
    logout_time: datetime
    duration_ms: int


@dataclass(frozen=True)
class StaleLogout:
    session_id: uuid.UUID
    login_time: datetime
    logout_time: datetime


class SessionLedger:
    def __init__(self, repository: Optional[SessionRepository] = None) -> None:
        self._sessions = repository or SessionRepository()

    async def get_open(
        self,
        session: AsyncSession,
        player_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Optional[LoginSession]:
        return await self._sessions.find_open(session, player_id, for_update=for_update)

    async def open(self, session: AsyncSession, player_id: uuid.UUID, at: datetime) -> LoginSession:
        """
        Open a new session.

        Raises:
            DuplicateSessionError: If the player already has an open session
        """
        login = LoginSession(id=uuid.uuid4(), player_id=player_id, login_time=ensure_utc(at))
        self._sessions.add(session, login)

        try:
            await session.flush()
        except IntegrityError as exc:
            logger.warning(
                "Rejected second open session",
                extra={"player_id": str(player_id), "error": str(exc.orig)},
            )
            raise DuplicateSessionError(str(player_id)) from exc

        logger.debug(
            "Login session opened",
            extra={"player_id": str(player_id), "session_id": str(login.id)},
        )
        return login

    async def close(
        self,
        session: AsyncSession,
        player_id: uuid.UUID,
        at: datetime,
    ) -> Union[ClosedSession, StaleLogout, None]:
        """
        Close the open session at `at`.

        Returns None when there is no open session, and StaleLogout without
        touching the session when `at` is earlier than its login.
        """
        login = await self._sessions.find_open(session, player_id, for_update=True)
        if login is None:
            return None

        logout_time = ensure_utc(at)
        if logout_time < ensure_utc(login.login_time):
            return StaleLogout(session_id=login.id, login_time=login.login_time, logout_time=logout_time)

        duration_ms = login.duration_ms(now=logout_time)
        login.logout_time = logout_time
        await session.flush()

        logger.debug(
            "Login session closed",
            extra={
                "player_id": str(player_id),
                "session_id": str(login.id),
                "duration_ms": duration_ms,
            },
        )
        return ClosedSession(
            session_id=login.id,
            login_time=login.login_time,
            logout_time=logout_time,
            duration_ms=duration_ms,
        )
