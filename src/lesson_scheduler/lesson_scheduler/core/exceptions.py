from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    """Base exception for business rule violations."""

    kind = "domain_error"


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules."""

    kind = "validation_error"


class NotFoundError(DomainError):
    """Raised when a referenced slot or request does not exist."""

    kind = "not_found"


class InvalidStateError(DomainError):
    """Raised when a transition is attempted from a status that does not permit it."""

    kind = "invalid_state"


class ConflictError(DomainError):
    """Advisory double-booking signal; carries the slot that was hit."""

    kind = "conflict"

    def __init__(self, message: str, conflicting_slot: Optional[Any] = None):
        super().__init__(message)
        self.conflicting_slot = conflicting_slot


class PersistenceError(DomainError):
    """Raised on storage failures, including rolled-back transactions."""

    kind = "persistence_error"
