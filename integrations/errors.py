"""
Directory Errors

Classification of failed directory API responses.
"""

from enum import Enum


class DirectoryErrorCode(str, Enum):
    """Failure classes for directory API calls."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT_SERVER_ERROR = "transient_server_error"
    AUTH_FAILED = "auth_failed"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


RETRYABLE_CODES = frozenset(
    {DirectoryErrorCode.RATE_LIMITED, DirectoryErrorCode.TRANSIENT_SERVER_ERROR}
)


class DirectoryError(Exception):
    """A directory API call failed."""

    code: DirectoryErrorCode = DirectoryErrorCode.UNKNOWN

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{self.code.value}] {message}")

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


class RateLimited(DirectoryError):
    code = DirectoryErrorCode.RATE_LIMITED


class TransientServerError(DirectoryError):
    code = DirectoryErrorCode.TRANSIENT_SERVER_ERROR


class AuthError(DirectoryError):
    code = DirectoryErrorCode.AUTH_FAILED


class NotFound(DirectoryError):
    code = DirectoryErrorCode.NOT_FOUND


class UnknownDirectoryError(DirectoryError):
    code = DirectoryErrorCode.UNKNOWN


def classify_status(status_code: int, message: str = "") -> DirectoryError:
    """Build the error matching a non-2xx HTTP status."""
    message = message or f"Directory API returned HTTP {status_code}"
    if status_code == 429:
        return RateLimited(message, status_code)
    if status_code in (401, 403):
        return AuthError(message, status_code)
    if status_code == 404:
        return NotFound(message, status_code)
    if 500 <= status_code < 600:
        return TransientServerError(message, status_code)
    return UnknownDirectoryError(message, status_code)
