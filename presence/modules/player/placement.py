"""
Server placement helpers.

Server identifiers follow `<fleet>-<replica>-<instance>`, where the fleet
name may itself contain hyphens. Every transition that records a placement
derives the fleet through `parse_fleet`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from presence.modules.shared.exceptions import ValidationError


def parse_fleet(server_id: str) -> str:
    """
    Strip the last two hyphen-delimited segments of a server identifier.

    >>> parse_fleet("lobby-7f9c-a1b2")
    'lobby'
    >>> parse_fleet("mini-games-lobby-7f9c-a1b2")
    'mini-games-lobby'

    Raises:
        ValidationError: If fewer than three segments are present
    """
    if not isinstance(server_id, str):
        raise ValidationError("server_id", f"expected a string, got {type(server_id).__name__}")

    segments = server_id.split("-")
    fleet = "-".join(segments[:-2])
    if len(segments) < 3 or not fleet:
        raise ValidationError(
            "server_id",
            f"'{server_id}' does not match <fleet>-<replica>-<instance>",
        )
    return fleet


@dataclass(frozen=True)
class Placement:
    server_id: str
    fleet_name: str
    proxy_id: Optional[str] = None

    @classmethod
    def for_server(cls, server_id: str, proxy_id: Optional[str] = None) -> Placement:
        return cls(server_id=server_id, fleet_name=parse_fleet(server_id), proxy_id=proxy_id)
