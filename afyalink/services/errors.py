"""Domain exception hierarchy raised by the service layer.

Each exception carries the HTTP status the API layer should answer with, so
route handlers can let them propagate to the global exception handler.
"""

from __future__ import annotations


class AfyaLinkError(Exception):
    """Base exception for all domain errors."""

    status_code: int = 500

    def __init__(self, detail: str, *, field: str | None = None) -> None:
        self.detail = detail
        self.field = field
        super().__init__(detail)


class ValidationError(AfyaLinkError):
    """Malformed input that the caller can correct."""

    status_code = 400


class NotFoundError(AfyaLinkError):
    """Reference to an unknown (or soft-deleted) entity."""

    status_code = 404


class ConflictError(AfyaLinkError):
    """Request collides with the current state of the entity."""

    status_code = 409


class SessionClosedError(ConflictError):
    """Message or transition attempted on an ended or cancelled chat session."""


class UnavailableError(AfyaLinkError):
    """Persistence layer unreachable. Retryable by the caller."""

    status_code = 503
