"""
Badge catalog: immutable badge definitions loaded from YAML.

Purpose
-------
Hold the read-only set of badge definitions the resolver decides against.
A catalog is built once and never mutated; `BadgeCatalogHolder.reload()`
replaces the whole object so readers always see one consistent version.

File Format
-----------
    badges:
      vip:
        priority: 10
        required: true
        friendlyName: VIP
        chatString: "<gold>VIP"
        hoverText: ["<gold>VIP", "Thanks for the support"]
        guiItem:
          display: true
          material: gold_ingot
          displayName: VIP
          lore: ["..."]
        automaticGrants:
          permissionRole: vip

Validation
----------
- Every badge needs an integer priority.
- A permission role may grant at most one badge.
- `guiItem` must be a mapping; `hoverText` and `lore` must be lists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple, Union

import yaml

from presence.core.exceptions import ConfigurationError
from presence.core.logging.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class BadgeGuiItem:
    display: bool = False
    material: str = ""
    display_name: str = ""
    lore: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BadgeDefinition:
    id: str
    priority: int
    required: bool = False
    permission_role: Optional[str] = None
    friendly_name: str = ""
    chat_string: str = ""
    hover_text: Tuple[str, ...] = ()
    gui_item: BadgeGuiItem = field(default_factory=BadgeGuiItem)

    @property
    def formatted_hover_text(self) -> str:
        return "\n".join(self.hover_text)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "priority": self.priority,
            "required": self.required,
            "friendly_name": self.friendly_name,
            "chat_string": self.chat_string,
            "hover_text": self.formatted_hover_text,
            "gui_item": {
                "display": self.gui_item.display,
                "material": self.gui_item.material,
                "display_name": self.gui_item.display_name,
                "lore": list(self.gui_item.lore),
            },
        }


class BadgeCatalog:
    """
    Immutable badge lookup plus the role -> badge grant index.

    Raises ConfigurationError on construction if two badges share an ID or
    a permission role.
    """

    def __init__(self, definitions: Iterable[BadgeDefinition]) -> None:
        by_id: dict[str, BadgeDefinition] = {}
        by_role: dict[str, BadgeDefinition] = {}

        for definition in definitions:
            if definition.id in by_id:
                raise ConfigurationError(
                    f"badges.{definition.id}", f"duplicate badge id '{definition.id}'"
                )
            by_id[definition.id] = definition

            role = definition.permission_role
            if role is None:
                continue
            if role in by_role:
                raise ConfigurationError(
                    f"badges.{definition.id}.automaticGrants.permissionRole",
                    f"role '{role}' already grants badge '{by_role[role].id}'",
                )
            by_role[role] = definition

        self._by_id: Mapping[str, BadgeDefinition] = MappingProxyType(by_id)
        self._by_role: Mapping[str, BadgeDefinition] = MappingProxyType(by_role)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, badge_id: object) -> bool:
        return badge_id in self._by_id

    def get(self, badge_id: str) -> Optional[BadgeDefinition]:
        return self._by_id.get(badge_id)

    def for_role(self, role_id: str) -> Optional[BadgeDefinition]:
        return self._by_role.get(role_id)

    def all(self) -> list[BadgeDefinition]:
        """All definitions, highest priority first, then by ID."""
        return sorted(self._by_id.values(), key=lambda d: (-d.priority, d.id))

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> BadgeCatalog:
        badges = raw.get("badges") or {}
        if not isinstance(badges, Mapping):
            raise ConfigurationError("badges", "expected a mapping of badge id to definition")

        return cls(_parse_badge(str(badge_id), body) for badge_id, body in badges.items())

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> BadgeCatalog:
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError("BADGE_CONFIG_PATH", f"cannot load {path}: {exc}") from exc

        if not isinstance(raw, Mapping):
            raise ConfigurationError("BADGE_CONFIG_PATH", f"{path} is not a YAML mapping")

        catalog = cls.from_mapping(raw)
        logger.info(
            "Badge catalog loaded",
            extra={"path": str(path), "badge_count": len(catalog)},
        )
        return catalog


def _parse_badge(badge_id: str, body: Any) -> BadgeDefinition:
    if not isinstance(body, Mapping):
        raise ConfigurationError(f"badges.{badge_id}", "definition must be a mapping")

    priority = body.get("priority")
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ConfigurationError(f"badges.{badge_id}.priority", "priority must be an integer")

    grants = body.get("automaticGrants") or {}
    role = grants.get("permissionRole") if isinstance(grants, Mapping) else None

    gui = body.get("guiItem") or {}
    if not isinstance(gui, Mapping):
        raise ConfigurationError(f"badges.{badge_id}.guiItem", "guiItem must be a mapping")
    gui_item = BadgeGuiItem(
        display=bool(gui.get("display", False)),
        material=str(gui.get("material", "")),
        display_name=str(gui.get("displayName", "")),
        lore=_text_lines(gui.get("lore"), f"badges.{badge_id}.guiItem.lore"),
    )

    return BadgeDefinition(
        id=badge_id,
        priority=priority,
        required=bool(body.get("required", False)),
        permission_role=str(role) if role else None,
        friendly_name=str(body.get("friendlyName", "")),
        chat_string=str(body.get("chatString", "")),
        hover_text=_text_lines(body.get("hoverText"), f"badges.{badge_id}.hoverText"),
        gui_item=gui_item,
    )


def _text_lines(value: Any, key: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigurationError(key, "must be a list of lines")
    return tuple(str(line) for line in value)


class BadgeCatalogHolder:
    """
    Points at the current catalog. Reload builds a new catalog first and
    swaps the reference only if it validates.
    """

    def __init__(self, catalog: BadgeCatalog, path: Optional[Union[str, Path]] = None) -> None:
        self._catalog = catalog
        self._path = Path(path) if path is not None else None

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> BadgeCatalogHolder:
        return cls(BadgeCatalog.from_file(path), path)

    @property
    def current(self) -> BadgeCatalog:
        return self._catalog

    def reload(self) -> BadgeCatalog:
        if self._path is None:
            raise ConfigurationError("BADGE_CONFIG_PATH", "catalog was not loaded from a file")

        fresh = BadgeCatalog.from_file(self._path)
        previous_count = len(self._catalog)
        self._catalog = fresh

        logger.info(
            "Badge catalog reloaded",
            extra={"previous_count": previous_count, "badge_count": len(fresh)},
        )
        return fresh
