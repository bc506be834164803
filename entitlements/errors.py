"""Error taxonomy shared by the catalog, assignment and pricing services."""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class FieldError:
    section: str
    field: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class EntitlementError(Exception):
    """Base exception for the entitlement core."""

    kind = "error"

    def __init__(self, message: str, errors: list[FieldError] | None = None):
        self.message = message
        self.errors = list(errors or [])
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": self.message,
            "errors": [error.to_dict() for error in self.errors],
        }


class ValidationError(EntitlementError):
    """Raised when input is malformed or does not type-check.

    Carries every field problem found so the caller can fix them in one
    round trip.
    """

    kind = "validation_error"

    @classmethod
    def single(cls, section: str, field: str, reason: str) -> "ValidationError":
        return cls(reason, [FieldError(section=section, field=field, reason=reason)])


class NotFoundError(EntitlementError):
    """Raised when a referenced id does not exist."""

    kind = "not_found"


class ConflictError(EntitlementError):
    """Raised when a delete or update is blocked by a live reference."""

    kind = "conflict"


class PersistenceError(EntitlementError):
    """Raised when the storage layer fails to commit."""

    kind = "persistence_error"
