"""
Shared building blocks for the domain modules.
"""

from .base_repository import BaseRepository
from .base_service import BaseService
from .exceptions import (
    BadgeAlreadyOwnedError,
    BadgeNotOwnedError,
    ConflictError,
    DuplicateSessionError,
    NotFoundError,
    PresenceDomainException,
    StatusCode,
    UnknownBadgeError,
    ValidationError,
    status_for,
)
from .pagination import DEFAULT_PAGE_SIZE, Page, PageData, Pageable

__all__ = [
    "BaseRepository",
    "BaseService",
    "PresenceDomainException",
    "ValidationError",
    "NotFoundError",
    "UnknownBadgeError",
    "ConflictError",
    "BadgeAlreadyOwnedError",
    "BadgeNotOwnedError",
    "DuplicateSessionError",
    "StatusCode",
    "status_for",
    "DEFAULT_PAGE_SIZE",
    "Pageable",
    "Page",
    "PageData",
]
