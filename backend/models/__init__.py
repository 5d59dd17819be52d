"""SQLAlchemy ORM Models for LicenseGuard."""

from backend.models.alert import Alert
from backend.models.base import Base, OrganizationScopedMixin, TimestampMixin
from backend.models.employee import Employee
from backend.models.integration import Integration
from backend.models.subscription import LicenseAssignment, Subscription

__all__ = [
    "Base",
    "OrganizationScopedMixin",
    "TimestampMixin",
    "Alert",
    "Employee",
    "Integration",
    "LicenseAssignment",
    "Subscription",
]
