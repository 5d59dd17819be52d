"""
Test Factories

Helper functions for creating domain instances in tests.
"""

import secrets
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

from backend.schemas.alert import Alert, AlertSeverity, AlertType
from backend.schemas.employee import Employee, EmployeeStatus
from backend.schemas.integration import Integration, IntegrationStatus
from backend.schemas.subscription import SubscriptionSnapshot
from integrations.base import DirectoryUser
from integrations.oauth_manager import OAuthTokens


def make_tokens(**overrides) -> OAuthTokens:
    """Create OAuthTokens valid for an hour."""
    defaults = {
        "access_token": f"access-{secrets.token_hex(4)}",
        "refresh_token": "refresh-token",
        "expires_at": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    defaults.update(overrides)
    return OAuthTokens(**defaults)


def make_directory_user(**overrides) -> DirectoryUser:
    """Create a DirectoryUser with sensible defaults."""
    suffix = secrets.token_hex(4)
    defaults = {
        "external_id": f"g-{suffix}",
        "email": f"user-{suffix}@example.com",
        "full_name": "Jane Doe",
        "status": "active",
        "job_title": "Engineer",
        "department": "Engineering",
        "org_unit_path": "/Engineering",
    }
    defaults.update(overrides)
    return DirectoryUser(**defaults)


def make_employee(organization_id, **overrides) -> Employee:
    """Create an Employee with sensible defaults."""
    suffix = secrets.token_hex(4)
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    defaults = {
        "id": uuid4(),
        "organization_id": organization_id,
        "external_id": f"g-{suffix}",
        "external_provider": "google_workspace",
        "email": f"user-{suffix}@example.com",
        "name": "Jane Doe",
        "status": EmployeeStatus.ACTIVE,
        "created_at": now,
        "updated_at": now,
    }
    defaults.update(overrides)
    return Employee(**defaults)


def make_integration(organization_id, **overrides) -> Integration:
    """Create an active Google Workspace Integration."""
    defaults = {
        "id": uuid4(),
        "organization_id": organization_id,
        "provider": "google_workspace",
        "status": IntegrationStatus.ACTIVE,
        "credentials": make_tokens(),
        "config": {},
    }
    defaults.update(overrides)
    return Integration(**defaults)


def make_alert(organization_id, **overrides) -> Alert:
    """Create a pending warning Alert."""
    defaults = {
        "organization_id": organization_id,
        "type": AlertType.RENEWAL_UPCOMING,
        "severity": AlertSeverity.WARNING,
        "title": "Slack renews in 10 day(s)",
        "subscription_id": uuid4(),
    }
    defaults.update(overrides)
    return Alert.create(**defaults)


def make_subscription(organization_id, **overrides) -> SubscriptionSnapshot:
    """Create an active seat-based SubscriptionSnapshot. Amounts in cents."""
    defaults = {
        "id": uuid4(),
        "organization_id": organization_id,
        "name": "Slack",
        "category": "communication",
        "status": "active",
        "currency": "USD",
        "price_per_unit": 1000,
        "total_monthly_cost": 10000,
        "total_seats": 10,
        "used_seats": 7,
        "auto_renew": True,
        "renewal_date": date.today() + timedelta(days=365),
    }
    defaults.update(overrides)
    return SubscriptionSnapshot(**defaults)
