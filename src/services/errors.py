"""
Exceptions raised by İnfoLine services.

The HTTP layer maps them to status codes; the CLI prints their message.
"""

from typing import Any, List, Optional


class InfoLineError(Exception):
    """Base class for service errors."""

    code = "INFOLINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details


class NotFoundError(InfoLineError):
    """A referenced school, sector, category, column or entry does not exist."""
    code = "NOT_FOUND"


class PermissionDeniedError(InfoLineError):
    """The acting user has no access to the requested entity."""
    code = "PERMISSION_DENIED"


class ValidationError(InfoLineError):
    """Input failed validation; details carries the per-column errors."""
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[List[Any]] = None, code: Optional[str] = None):
        super().__init__(message, code=code, details=errors or [])

    @property
    def errors(self) -> List[Any]:
        return self.details


class TransitionError(InfoLineError):
    """A status transition was refused."""
    code = "INVALID_TRANSITION"


class AuthenticationError(InfoLineError):
    """The caller did not identify itself with a valid user id."""
    code = "UNAUTHENTICATED"
