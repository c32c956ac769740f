"""
LoginSession: one connect-to-disconnect interval for a player.
Pure schema only.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from presence.core.database.base import Base, UTCDateTime, ensure_utc, utc_now


class LoginSession(Base):
    """
    Login session row.

    Schema-only:
    - id (session UUID)
    - player_id (FK to players.id)
    - login_time (creation timestamp; orders sessions)
    - logout_time (NULL while the session is open)

    The partial unique index allows at most one open session per player.
    """

    __tablename__ = "login_sessions"
    __table_args__ = (
        Index("ix_login_sessions_player_id", "player_id"),
        Index("ix_login_sessions_player_logout", "player_id", "logout_time"),
        Index(
            "uq_login_sessions_open_per_player",
            "player_id",
            unique=True,
            postgresql_where=text("logout_time IS NULL"),
            sqlite_where=text("logout_time IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    player_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("players.id", ondelete="CASCADE"),
        nullable=False,
    )

    login_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    logout_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    @property
    def is_open(self) -> bool:
        return self.logout_time is None

    def duration_ms(self, now: Optional[datetime] = None) -> int:
        """Closed: logout - login. Open: now - login (advisory)."""
        end = self.logout_time or now or utc_now()
        delta = ensure_utc(end) - ensure_utc(self.login_time)
        return int(delta.total_seconds() * 1000)

    def __repr__(self) -> str:
        return f"<LoginSession(id={self.id}, player_id={self.player_id}, open={self.is_open})>"
