"""
Badge Resolver

Purpose
-------
Own badge membership and the choice of each player's active badge.

Responsibilities
----------------
- add_badge / remove_badge with AlreadyOwned / NotOwned detection
- recompute_active: highest priority owned badge, ties broken by lowest ID
- set_active: explicit override of an owned badge
- apply_role_change: map an external permission role to its badge grant

Design Notes
------------
- Every mutation runs in one transaction that first locks the player row,
  so membership changes and the active-badge recomputation that follows
  them are atomic per player.
- Owned badge IDs missing from the catalog (removed from config) are
  skipped during recomputation with a warning.
- The catalog is read from a BadgeCatalogHolder once per operation, so a
  concurrent reload never changes the catalog mid-decision.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession

from presence.core.database.service import DatabaseService
from presence.core.event.types import BADGE_ACTIVE_CHANGED, BADGE_ADDED, BADGE_REMOVED
from presence.core.logging.logger import get_logger
from presence.modules.badge.catalog import BadgeCatalog, BadgeCatalogHolder, BadgeDefinition
from presence.modules.badge.repository import BadgeRepository
from presence.modules.player.repository import PlayerRepository
from presence.modules.shared.base_service import BaseService
from presence.modules.shared.exceptions import (
    BadgeAlreadyOwnedError,
    BadgeNotOwnedError,
    NotFoundError,
    UnknownBadgeError,
)

if TYPE_CHECKING:
    from presence.core.config.config_manager import ConfigManager
    from presence.core.event.bus import EventBus
    from presence.database.models import Player

logger = get_logger(__name__)


def select_active_badge(owned_ids: Iterable[str], catalog: BadgeCatalog) -> Optional[str]:
    """
    Pick the highest-priority badge among `owned_ids`, lowest ID on ties.

    Returns None if nothing owned is in the catalog.
    """
    candidates: List[BadgeDefinition] = []
    for badge_id in owned_ids:
        definition = catalog.get(badge_id)
        if definition is None:
            logger.warning("Player owns badge missing from catalog", extra={"badge_id": badge_id})
            continue
        candidates.append(definition)

    if not candidates:
        return None
    return min(candidates, key=lambda d: (-d.priority, d.id)).id


class BadgeResolver(BaseService):
    def __init__(
        self,
        config_manager: Type[ConfigManager],
        event_bus: EventBus,
        catalog: BadgeCatalogHolder,
        badges: Optional[BadgeRepository] = None,
        players: Optional[PlayerRepository] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._catalog = catalog
        self._badges = badges or BadgeRepository()
        self._players = players or PlayerRepository()

    @property
    def catalog(self) -> BadgeCatalog:
        return self._catalog.current

    async def _lock_player(self, session: AsyncSession, pid: uuid.UUID) -> Player:
        player = await self._players.get_for_update(session, pid)
        if player is None:
            raise NotFoundError("Player", str(pid))
        return player

    async def _recompute(
        self,
        session: AsyncSession,
        pid: uuid.UUID,
        catalog: BadgeCatalog,
        current: Optional[str],
    ) -> Optional[str]:
        owned = await self._badges.owned_ids(session, pid)
        chosen = select_active_badge(owned, catalog)
        if chosen != current:
            await self._badges.set_active(session, pid, chosen)
        self.log.debug(
            "Active badge calculated",
            extra={"player_id": str(pid), "owned": owned, "active_badge_id": chosen},
        )
        return chosen

    async def _emit_active_change(
        self, pid: uuid.UUID, before: Optional[str], after: Optional[str]
    ) -> None:
        if before != after:
            await self.emit_event(
                BADGE_ACTIVE_CHANGED,
                {"player_id": str(pid), "old_badge_id": before, "new_badge_id": after},
            )

    # ========================================================================
    # Membership
    # ========================================================================

    async def add_badge(self, player_id: Any, badge_id: str) -> Optional[str]:
        """
        Grant a badge. Returns the player's active badge afterwards.

        Raises:
            UnknownBadgeError: badge_id is not in the catalog
            NotFoundError: unknown player
            BadgeAlreadyOwnedError: the player already owns it
        """
        pid = self.parse_player_id(player_id)
        catalog = self.catalog
        definition = catalog.get(badge_id)
        if definition is None:
            raise UnknownBadgeError(badge_id)

        async with DatabaseService.get_transaction() as session:
            player = await self._lock_player(session, pid)
            before = player.active_badge_id

            if not await self._badges.add(session, pid, badge_id):
                raise BadgeAlreadyOwnedError(str(pid), badge_id)

            after = before
            if definition.required:
                after = await self._recompute(session, pid, catalog, before)

        self.log_operation("add_badge", player_id=str(pid), badge_id=badge_id, active_badge_id=after)
        await self.emit_event(BADGE_ADDED, {"player_id": str(pid), "badge_id": badge_id})
        await self._emit_active_change(pid, before, after)
        return after

    async def remove_badge(self, player_id: Any, badge_id: str) -> Optional[str]:
        """
        Revoke a badge. Returns the player's active badge afterwards.

        Raises:
            NotFoundError: unknown player
            BadgeNotOwnedError: the player does not own it
        """
        pid = self.parse_player_id(player_id)
        catalog = self.catalog

        async with DatabaseService.get_transaction() as session:
            player = await self._lock_player(session, pid)
            before = player.active_badge_id

            if not await self._badges.remove(session, pid, badge_id):
                raise BadgeNotOwnedError(str(pid), badge_id)

            after = before
            if before == badge_id:
                after = await self._recompute(session, pid, catalog, before)

        self.log_operation("remove_badge", player_id=str(pid), badge_id=badge_id, active_badge_id=after)
        await self.emit_event(BADGE_REMOVED, {"player_id": str(pid), "badge_id": badge_id})
        await self._emit_active_change(pid, before, after)
        return after

    # ========================================================================
    # Active badge
    # ========================================================================

    async def recompute_active(self, player_id: Any) -> Optional[str]:
        pid = self.parse_player_id(player_id)
        catalog = self.catalog

        async with DatabaseService.get_transaction() as session:
            player = await self._lock_player(session, pid)
            before = player.active_badge_id
            after = await self._recompute(session, pid, catalog, before)

        await self._emit_active_change(pid, before, after)
        return after

    async def set_active(self, player_id: Any, badge_id: str) -> None:
        """
        Raises:
            NotFoundError: unknown player
            BadgeNotOwnedError: the player does not own badge_id
        """
        pid = self.parse_player_id(player_id)

        async with DatabaseService.get_transaction() as session:
            player = await self._lock_player(session, pid)
            before = player.active_badge_id

            if not await self._badges.owns(session, pid, badge_id):
                raise BadgeNotOwnedError(str(pid), badge_id)
            if before != badge_id:
                await self._badges.set_active(session, pid, badge_id)

        self.log_operation("set_active_badge", player_id=str(pid), badge_id=badge_id)
        await self._emit_active_change(pid, before, badge_id)

    # ========================================================================
    # Role grants
    # ========================================================================

    async def apply_role_change(self, player_id: Any, role_id: str, added: bool) -> Optional[str]:
        """
        Grant or revoke the badge bound to `role_id`.

        Returns the affected badge ID, or None when no badge maps to the role.
        """
        definition = self.catalog.for_role(role_id)
        if definition is None:
            self.log.debug("No badge granted by role", extra={"role_id": role_id, "added": added})
            return None

        if added:
            await self.add_badge(player_id, definition.id)
        else:
            await self.remove_badge(player_id, definition.id)
        return definition.id
