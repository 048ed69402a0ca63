"""Typed failures surfaced by the store, repositories and service layer.

Store-level failures:
    - ConstraintViolation: uniqueness or foreign-key violation
    - TransactionFailure: a step inside a scoped transaction failed
      (everything in that scope has been rolled back)
    - StoreUnavailable: the store connection could not be used
    - MigrationError: a migration unit failed; the run stopped

Request-level failures (client errors of the API contract):
    - NotFoundError, ValidationError, PermissionDenied

Point lookups never raise ``NotFoundError``; they return ``None``.
"""


class SocialDBError(Exception):
    """Base class for every failure raised by this package."""


class ConstraintViolation(SocialDBError):
    """Uniqueness or foreign-key constraint rejected a write."""


class TransactionFailure(SocialDBError):
    """A scoped multi-statement unit failed and was rolled back."""


class StoreUnavailable(SocialDBError):
    """The underlying store connection failed."""


class MigrationError(SocialDBError):
    """A forward or backward migration step failed."""

    def __init__(self, message: str, migration: str | None = None):
        super().__init__(message)
        self.migration = migration


class NotFoundError(SocialDBError):
    """The addressed entity does not exist."""


class ValidationError(SocialDBError):
    """Request input is missing or malformed."""


class PermissionDenied(SocialDBError):
    """The caller may not perform the requested operation."""


__all__ = [
    "SocialDBError",
    "ConstraintViolation",
    "TransactionFailure",
    "StoreUnavailable",
    "MigrationError",
    "NotFoundError",
    "ValidationError",
    "PermissionDenied",
]
