from .repository import SessionRepository
from .service import ClosedSession, SessionLedger, StaleLogout

__all__ = ["SessionRepository", "SessionLedger", "ClosedSession", "StaleLogout"]
