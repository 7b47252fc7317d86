"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    field: str
    attempts: int
    path: str
    http_status: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class DuplicateEntryError(AppError):
    """Raised when an insert would violate a uniqueness invariant.

    Public callers must translate this into a response that does not reveal
    whether the email was already registered.
    """


class ReferralCodeExhaustedError(AppError):
    """Raised when no unused referral code was found within the retry cap."""


class StorageAppError(AppError):
    """Raised when the durable snapshot cannot be read or written."""


class EncryptionAppError(AppError):
    """Raised when a personal data field could not be protected for storage."""
