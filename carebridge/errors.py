"""
Error taxonomy shared by the domain modules and the HTTP layer.

Every failure a caller can see is one of a closed set of kinds, and each kind
owns its HTTP status, so route handlers never inspect message text.
"""

from enum import Enum


class ErrorKind(Enum):
    UNAUTHENTICATED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409
    VALIDATION = 400

    @property
    def status_code(self) -> int:
        return self.value


class PortalError(Exception):
    """Base class for errors surfaced to API callers as ``{"error": message}``."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return self.kind.status_code


class Unauthenticated(PortalError):
    kind = ErrorKind.UNAUTHENTICATED


class Forbidden(PortalError):
    kind = ErrorKind.FORBIDDEN


class NotFound(PortalError):
    kind = ErrorKind.NOT_FOUND


class Conflict(PortalError):
    kind = ErrorKind.CONFLICT


class ValidationError(PortalError):
    kind = ErrorKind.VALIDATION
