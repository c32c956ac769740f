"""
Database Models Package

Schema-only SQLAlchemy ORM models for the presence service:

- Player / PlayerBadge: presence record and badge set membership
- LoginSession: connect-to-disconnect intervals
- UsernameHistory: append-only username changes
"""

from presence.core.database.base import Base

from .login_session import LoginSession
from .player import Player, PlayerBadge
from .username_history import UsernameHistory

__all__ = [
    "Base",
    "Player",
    "PlayerBadge",
    "LoginSession",
    "UsernameHistory",
]
