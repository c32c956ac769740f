"""
Log context helpers for event publication.
"""

from __future__ import annotations

from typing import Any

from presence.core.logging.logger import LogContext


def event_log_context(event_name: str, payload: dict[str, Any]) -> LogContext:
    """
    Context block tagging log records with the published event.

    Only payload keys are recorded. A `player_id` in the payload is carried
    into the standard context field. The caller's context is restored when
    the block exits; background listeners spawned inside it keep the tags.
    """
    return LogContext(
        player_id=payload.get("player_id"),
        event_name=event_name,
        event_keys=list(payload.keys()),
    )
