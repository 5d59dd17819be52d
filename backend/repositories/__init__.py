"""Repository interfaces and SQLAlchemy implementations."""

from backend.repositories.alert import SqlAlertRepository
from backend.repositories.base import (
    AlertRepository,
    EmployeeRepository,
    IntegrationRepository,
    SubscriptionRepository,
)
from backend.repositories.employee import SqlEmployeeRepository
from backend.repositories.integration import SqlIntegrationRepository
from backend.repositories.subscription import SqlSubscriptionRepository

__all__ = [
    "AlertRepository",
    "EmployeeRepository",
    "IntegrationRepository",
    "SubscriptionRepository",
    "SqlAlertRepository",
    "SqlEmployeeRepository",
    "SqlIntegrationRepository",
    "SqlSubscriptionRepository",
]
