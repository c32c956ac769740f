from .catalog import BadgeCatalog, BadgeCatalogHolder, BadgeDefinition, BadgeGuiItem
from .repository import BadgeRepository
from .service import BadgeResolver, select_active_badge

__all__ = [
    "BadgeCatalog",
    "BadgeCatalogHolder",
    "BadgeDefinition",
    "BadgeGuiItem",
    "BadgeRepository",
    "BadgeResolver",
    "select_active_badge",
]
