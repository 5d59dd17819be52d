"""
LicenseGuard External Integrations

Connectors for identity directories.
"""

from integrations.base import (
    DirectoryOrgUnit,
    DirectoryPage,
    DirectoryProvider,
    DirectoryUser,
    DirectoryUserStatus,
)
from integrations.errors import (
    AuthError,
    DirectoryError,
    DirectoryErrorCode,
    NotFound,
    RateLimited,
    TransientServerError,
)

__all__ = [
    "AuthError",
    "DirectoryError",
    "DirectoryErrorCode",
    "DirectoryOrgUnit",
    "DirectoryPage",
    "DirectoryProvider",
    "DirectoryUser",
    "DirectoryUserStatus",
    "NotFound",
    "RateLimited",
    "TransientServerError",
]
