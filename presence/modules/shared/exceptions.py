"""
Domain exceptions for the presence service.

Purpose
-------
Define the structured, domain-specific exception hierarchy raised by the
presence, session, and badge services for business rule violations. The
query layer maps each class to a distinct status (see `status_for`).

Design Notes
------------
- All domain exceptions inherit from `PresenceDomainException`, which shares
  its structure (message, details, severity, is_retryable, error_code) with
  the infrastructure hierarchy in presence.core.exceptions.
- Taxonomy:
  - ValidationError: malformed input, rejected before any mutation
  - NotFoundError: player / session / badge absent
  - ConflictError: AlreadyOwned / NotOwned / duplicate open session
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from presence.core.exceptions import ErrorSeverity, StructuredError


class PresenceDomainException(StructuredError):
    """Base exception for all domain-level errors."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO


class ValidationError(PresenceDomainException):
    """
    Raised when input fails domain validation.

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={"field": field, "validation_message": message},
            error_code=f"VALIDATION_{field.upper()}",
        )


class NotFoundError(PresenceDomainException):
    """
    Raised when a requested resource cannot be found.

    Args:
        resource_type: Type of resource (e.g., "Player", "LoginSession")
        identifier: Optional identifier for the missing resource
    """

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier

        if identifier is not None:
            message = f"{resource_type} not found: {identifier}"
        else:
            message = f"{resource_type} not found"

        super().__init__(
            message,
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class UnknownBadgeError(NotFoundError):
    """Raised when a badge ID is not present in the badge catalog."""

    def __init__(self, badge_id: str) -> None:
        self.badge_id = badge_id
        super().__init__("Badge", badge_id)


class ConflictError(PresenceDomainException):
    """
    Raised when a mutation conflicts with current state.

    Args:
        action: The attempted action
        reason: Why the current state forbids it
    """

    def __init__(self, action: str, reason: str, **details: Any) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Conflict during '{action}': {reason}",
            details={"action": action, "reason": reason, **details},
            error_code=f"CONFLICT_{action.upper()}",
        )


class BadgeAlreadyOwnedError(ConflictError):
    def __init__(self, player_id: str, badge_id: str) -> None:
        self.player_id = player_id
        self.badge_id = badge_id
        super().__init__(
            "add_badge",
            "player already owns badge",
            player_id=player_id,
            badge_id=badge_id,
        )


class BadgeNotOwnedError(ConflictError):
    def __init__(self, player_id: str, badge_id: str) -> None:
        self.player_id = player_id
        self.badge_id = badge_id
        super().__init__(
            "badge_ownership",
            "player does not own badge",
            player_id=player_id,
            badge_id=badge_id,
        )


class DuplicateSessionError(ConflictError):
    def __init__(self, player_id: str) -> None:
        self.player_id = player_id
        super().__init__(
            "open_session",
            "player already has an open login session",
            player_id=player_id,
        )


# ============================================================================
# Status mapping for the synchronous query surface
# ============================================================================


class StatusCode(Enum):
    """Transport-neutral result codes, named after their RPC equivalents."""

    INVALID_ARGUMENT = "invalid_argument"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    FAILED_PRECONDITION = "failed_precondition"
    INTERNAL = "internal"


def status_for(exc: BaseException) -> StatusCode:
    """
    Map an exception to the status a caller should receive.

    Storage and timeout failures map to INTERNAL.
    """
    if isinstance(exc, ValidationError):
        return StatusCode.INVALID_ARGUMENT
    if isinstance(exc, NotFoundError):
        return StatusCode.NOT_FOUND
    if isinstance(exc, BadgeAlreadyOwnedError):
        return StatusCode.ALREADY_EXISTS
    if isinstance(exc, ConflictError):
        return StatusCode.FAILED_PRECONDITION
    return StatusCode.INTERNAL
