from .service import OnlinePlayer, PresenceAggregator

__all__ = ["OnlinePlayer", "PresenceAggregator"]
