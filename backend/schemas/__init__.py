"""Domain models for LicenseGuard."""

from backend.schemas.alert import (
    Alert,
    AlertCounts,
    AlertData,
    AlertSeverity,
    AlertStatus,
    AlertType,
    generate_alert_key,
)
from backend.schemas.employee import (
    Employee,
    EmployeeChanges,
    EmployeeStatus,
    ReconcileOutcome,
    SyncStats,
)
from backend.schemas.integration import Integration, IntegrationStatus, SyncStatus
from backend.schemas.subscription import (
    OffboardedLicenseHolder,
    SubscriptionSnapshot,
    UnusedAssignment,
)

__all__ = [
    "Alert",
    "AlertCounts",
    "AlertData",
    "AlertSeverity",
    "AlertStatus",
    "AlertType",
    "generate_alert_key",
    "Employee",
    "EmployeeChanges",
    "EmployeeStatus",
    "ReconcileOutcome",
    "SyncStats",
    "Integration",
    "IntegrationStatus",
    "SyncStatus",
    "OffboardedLicenseHolder",
    "SubscriptionSnapshot",
    "UnusedAssignment",
]
