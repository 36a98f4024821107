"""
errors.py — exception hierarchy for the profile form core.

Every error here is recoverable and scoped to one field or one submit attempt.
Messages never contain sensitive values.
"""
from __future__ import annotations

from typing import Iterable, Optional


class PortalError(Exception):
    """Base exception for profile form errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ProfileValidationError(PortalError):
    """Required fields missing or malformed. Raised before any network call."""

    def __init__(self, fields: Iterable[str]):
        self.fields: list[str] = list(fields)
        super().__init__(
            f"Profile validation failed for {len(self.fields)} field(s): "
            + ", ".join(self.fields)
        )


class DecryptLoadError(PortalError):
    """A reveal request failed; the field stays in its pre-reveal state."""

    def __init__(self, field: str, message: str = "Failed to load decrypted value"):
        super().__init__(message)
        self.field = field


class SaveError(PortalError):
    """The update request failed. message is the server's text, verbatim."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SaveInProgressError(PortalError):
    """A second Save was attempted while one is already in flight."""

    def __init__(self) -> None:
        super().__init__("A save is already in progress for this form")


class FieldStateError(PortalError):
    """An operation was invoked on a field in the wrong state."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
