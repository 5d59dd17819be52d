"""
Repository Interfaces

Storage contracts consumed by the sync and alert services, plus the shared
session handling for the SQLAlchemy implementations.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.errors import PersistenceError
from backend.schemas.alert import Alert, AlertCounts
from backend.schemas.employee import Employee, EmployeeChanges
from backend.schemas.integration import Integration
from backend.schemas.subscription import (
    OffboardedLicenseHolder,
    SubscriptionSnapshot,
    UnusedAssignment,
)
from integrations.oauth_manager import OAuthTokens


class EmployeeRepository(Protocol):
    async def find_by_id(self, employee_id: UUID) -> Employee | None: ...

    async def find_by_external_id_or_email(
        self, organization_id: UUID, external_id: str, email: str
    ) -> Employee | None: ...

    async def create(self, employee: Employee) -> Employee: ...

    async def update(self, employee_id: UUID, changes: EmployeeChanges) -> Employee: ...


class AlertRepository(Protocol):
    async def find_by_id(self, alert_id: UUID) -> Alert | None: ...

    async def find_by_alert_key(self, organization_id: UUID, alert_key: str) -> Alert | None: ...

    async def save(self, alert: Alert) -> Alert: ...

    async def save_many(self, alerts: list[Alert]) -> list[Alert]: ...

    async def count_by_status(self, organization_id: UUID) -> AlertCounts: ...

    async def calculate_potential_savings(self, organization_id: UUID) -> int: ...

    async def delete_old_alerts(self, organization_id: UUID, days_old: int) -> int: ...


class IntegrationRepository(Protocol):
    async def find_by_id(self, integration_id: UUID) -> Integration | None: ...

    async def find_active_by_provider(self, provider: str) -> list[Integration]: ...

    async def list_active_organization_ids(self) -> list[UUID]: ...

    async def save(self, integration: Integration) -> Integration: ...

    async def update_tokens(self, integration_id: UUID, tokens: OAuthTokens) -> None: ...

    async def record_batch_progress(
        self,
        integration_id: UUID,
        batch_stats: dict,
        total_batches: int,
        total_users: int,
    ) -> None: ...


class SubscriptionRepository(Protocol):
    async def list_offboarded_license_holders(
        self, organization_id: UUID
    ) -> list[OffboardedLicenseHolder]: ...

    async def list_active_subscriptions(
        self, organization_id: UUID
    ) -> list[SubscriptionSnapshot]: ...

    async def list_unused_assignments(
        self, organization_id: UUID, unused_since: datetime
    ) -> list[UnusedAssignment]: ...


class SqlRepository:
    """Base for repositories that open one transaction per operation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(f"{type(self).__name__}: {e}") from e
            except Exception:
                await session.rollback()
                raise
