from .service import PlayerBadgesView, PlayerView, QueryService, SessionView

__all__ = ["QueryService", "PlayerView", "SessionView", "PlayerBadgesView"]
