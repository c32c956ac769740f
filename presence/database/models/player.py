"""
Player and PlayerBadge: authoritative presence record and badge membership.
Pure schema only.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from presence.core.database.base import Base, UTCDateTime, utc_now


class Player(Base):
    """
    Player row.

    Schema-only:
    - id (stable player UUID)
    - current_username / current_skin
    - first_login (first observed connect)
    - last_online (meaningful only while offline)
    - total_playtime_ms (sum of closed session durations)
    - active_badge_id (a member of `badges`, or NULL)
    - server_id / proxy_id / fleet_name (placement; server_id present iff online)
    """

    __tablename__ = "players"
    __table_args__ = (
        Index("ix_players_current_username", "current_username"),
        Index("ix_players_server_id", "server_id"),
        Index("ix_players_fleet_name", "fleet_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)

    current_username: Mapped[str] = mapped_column(String(32), nullable=False)

    current_skin: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    first_login: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    last_online: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    total_playtime_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    active_badge_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    server_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    proxy_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    fleet_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    badges: Mapped[list["PlayerBadge"]] = relationship(
        "PlayerBadge",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PlayerBadge.badge_id",
    )

    @property
    def is_online(self) -> bool:
        return self.server_id is not None

    @property
    def badge_ids(self) -> list[str]:
        return [badge.badge_id for badge in self.badges]

    def __repr__(self) -> str:
        return f"<Player(id={self.id}, username={self.current_username!r}, online={self.is_online})>"


Index("ix_players_current_username_lower", func.lower(Player.current_username))


class PlayerBadge(Base):
    """
    Owned badge membership. The composite primary key makes membership a set.
    """

    __tablename__ = "player_badges"

    player_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("players.id", ondelete="CASCADE"),
        primary_key=True,
    )

    badge_id: Mapped[str] = mapped_column(String(64), primary_key=True)
