"""
Error taxonomy for the external collaborators (GitHub, LLM provider).

Collaborators raise these; the orchestrator captures them per branch and
hands them back next to whatever data did succeed.
"""
from datetime import datetime
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    UPSTREAM = "upstream"
    MALFORMED = "malformed"
    UNCONFIGURED = "unconfigured"


class CollaboratorError(Exception):
    """Base class for failures reported by an external service call."""

    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class NotFoundError(CollaboratorError):
    kind = ErrorKind.NOT_FOUND


class RateLimitedError(CollaboratorError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, reset_at: Optional[datetime] = None):
        super().__init__(message)
        self.reset_at = reset_at

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.reset_at is not None:
            data["reset_at"] = self.reset_at.isoformat()
        return data


class UnauthorizedError(CollaboratorError):
    kind = ErrorKind.UNAUTHORIZED


class UpstreamError(CollaboratorError):
    """Server-side failure, transport error or timeout."""

    kind = ErrorKind.UPSTREAM

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(CollaboratorError):
    """The payload did not match the expected shape."""

    kind = ErrorKind.MALFORMED


class UnconfiguredError(CollaboratorError):
    """The collaborator is missing required configuration (e.g. an API key)."""

    kind = ErrorKind.UNCONFIGURED


class InvalidTargetError(ValueError):
    """Raised for empty or unparseable repository/user identifiers."""


# HTTP status used when a collaborator error surfaces through a route
HTTP_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.MALFORMED: 502,
    ErrorKind.UNCONFIGURED: 503,
}


def http_status_for(error: CollaboratorError) -> int:
    return HTTP_STATUS_BY_KIND.get(error.kind, 502)
