from .placement import Placement, parse_fleet
from .repository import PlayerRepository
from .service import ConnectOutcome, DisconnectOutcome, PresenceStateMachine

__all__ = [
    "Placement",
    "parse_fleet",
    "PlayerRepository",
    "PresenceStateMachine",
    "ConnectOutcome",
    "DisconnectOutcome",
]
