"""
UsernameHistory: append-only log of observed usernames.
Pure schema only.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from presence.core.database.base import Base, UTCDateTime


class UsernameHistory(Base):
    __tablename__ = "username_history"
    __table_args__ = (
        Index("ix_username_history_player_id", "player_id"),
        Index("ix_username_history_username", "username"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    player_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("players.id", ondelete="CASCADE"),
        nullable=False,
    )

    username: Mapped[str] = mapped_column(String(32), nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
