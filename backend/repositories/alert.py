"""
Alert Repository

SQLAlchemy storage for alerts. The unique (organization_id, alert_key)
constraint settles concurrent inserts of the same alert.
"""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from backend.errors import PersistenceError
from backend.models.alert import Alert as AlertRow
from backend.repositories.base import SqlRepository
from backend.schemas.alert import Alert, AlertCounts, AlertStatus

logger = logging.getLogger(__name__)

OPEN_STATUSES = (AlertStatus.PENDING.value, AlertStatus.ACKNOWLEDGED.value)
CLOSED_STATUSES = (AlertStatus.RESOLVED.value, AlertStatus.DISMISSED.value)

# Columns copied verbatim between the entity and the row
_PLAIN_FIELDS = (
    "organization_id",
    "title",
    "description",
    "employee_id",
    "subscription_id",
    "potential_savings",
    "currency",
    "acknowledged_at",
    "acknowledged_by",
    "resolved_at",
    "resolved_by",
    "resolution_notes",
    "dismissed_at",
    "dismissed_by",
    "dismiss_reason",
    "snoozed_until",
    "snoozed_by",
    "alert_key",
    "created_at",
    "updated_at",
)


def alert_from_row(row: AlertRow) -> Alert:
    return Alert.model_validate(row)


def apply_alert_to_row(alert: Alert, row: AlertRow) -> AlertRow:
    row.id = alert.id
    row.type = alert.type.value
    row.severity = alert.severity.value
    row.status = alert.status.value
    row.data = alert.data.model_dump(mode="json") if alert.data else None
    for field in _PLAIN_FIELDS:
        setattr(row, field, getattr(alert, field))
    return row


class SqlAlertRepository(SqlRepository):
    async def find_by_id(self, alert_id: UUID) -> Alert | None:
        async with self._session() as session:
            row = await session.get(AlertRow, alert_id)
            return alert_from_row(row) if row else None

    async def find_by_alert_key(self, organization_id: UUID, alert_key: str) -> Alert | None:
        async with self._session() as session:
            result = await session.execute(
                select(AlertRow).where(
                    AlertRow.organization_id == organization_id,
                    AlertRow.alert_key == alert_key,
                )
            )
            row = result.scalar_one_or_none()
            return alert_from_row(row) if row else None

    async def save(self, alert: Alert) -> Alert:
        """
        Insert or update an alert by ID.

        If a concurrent run already inserted an alert with the same key,
        the stored alert is returned instead of a duplicate.
        """
        try:
            async with self._session() as session:
                row = await session.get(AlertRow, alert.id)
                if row is None:
                    row = AlertRow()
                    session.add(row)
                apply_alert_to_row(alert, row)
                await session.flush()
                return alert_from_row(row)
        except PersistenceError as e:
            if not isinstance(e.__cause__, IntegrityError) or not alert.alert_key:
                raise
            existing = await self.find_by_alert_key(alert.organization_id, alert.alert_key)
            if existing is None:
                raise
            logger.info(
                f"Alert {alert.alert_key} already exists for org {alert.organization_id}, "
                f"reusing {existing.id}"
            )
            return existing

    async def save_many(self, alerts: list[Alert]) -> list[Alert]:
        return [await self.save(alert) for alert in alerts]

    async def count_by_status(self, organization_id: UUID) -> AlertCounts:
        async with self._session() as session:
            result = await session.execute(
                select(AlertRow.status, func.count())
                .where(AlertRow.organization_id == organization_id)
                .group_by(AlertRow.status)
            )
            return AlertCounts(**{status: count for status, count in result.all()})

    async def calculate_potential_savings(self, organization_id: UUID) -> int:
        """Sum savings over pending and acknowledged alerts."""
        async with self._session() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(AlertRow.potential_savings), 0)).where(
                    AlertRow.organization_id == organization_id,
                    AlertRow.status.in_(OPEN_STATUSES),
                    AlertRow.potential_savings.is_not(None),
                )
            )
            return int(result.scalar_one())

    async def delete_old_alerts(self, organization_id: UUID, days_old: int) -> int:
        """Delete resolved or dismissed alerts last touched more than ``days_old`` days ago."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_old)
        async with self._session() as session:
            result = await session.execute(
                delete(AlertRow).where(
                    AlertRow.organization_id == organization_id,
                    AlertRow.status.in_(CLOSED_STATUSES),
                    AlertRow.updated_at < cutoff,
                )
            )
            return result.rowcount or 0
