"""
Subscription Repository

Read-only queries over subscriptions and license assignments used by
the alert generators.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import selectinload

from backend.models.employee import Employee as EmployeeRow
from backend.models.subscription import LicenseAssignment, Subscription
from backend.repositories.base import SqlRepository
from backend.schemas.alert import LicenseRef
from backend.schemas.employee import EmployeeStatus
from backend.schemas.subscription import (
    OffboardedLicenseHolder,
    SubscriptionSnapshot,
    UnusedAssignment,
)

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trial")


class SqlSubscriptionRepository(SqlRepository):
    async def list_offboarded_license_holders(
        self,
        organization_id: UUID,
    ) -> list[OffboardedLicenseHolder]:
        """Offboarded employees that still hold at least one active assignment."""
        async with self._session() as session:
            result = await session.execute(
                select(LicenseAssignment)
                .join(EmployeeRow, LicenseAssignment.employee_id == EmployeeRow.id)
                .where(
                    LicenseAssignment.organization_id == organization_id,
                    LicenseAssignment.status == "active",
                    EmployeeRow.status == EmployeeStatus.OFFBOARDED.value,
                )
                .options(
                    selectinload(LicenseAssignment.subscription),
                    selectinload(LicenseAssignment.employee),
                )
                .order_by(EmployeeRow.offboarded_at.desc())
            )

            holders: dict[UUID, OffboardedLicenseHolder] = {}
            for assignment in result.scalars().all():
                employee = assignment.employee
                holder = holders.get(employee.id)
                if holder is None:
                    holder = OffboardedLicenseHolder(
                        employee_id=employee.id,
                        name=employee.name,
                        email=employee.email,
                        offboarded_at=employee.offboarded_at,
                    )
                    holders[employee.id] = holder
                subscription = assignment.subscription
                holder.licenses.append(
                    LicenseRef(
                        subscription_id=subscription.id,
                        name=subscription.name,
                        price_per_unit=subscription.price_per_unit or 0,
                        currency=subscription.currency,
                    )
                )
            return list(holders.values())

    async def list_active_subscriptions(
        self,
        organization_id: UUID,
    ) -> list[SubscriptionSnapshot]:
        async with self._session() as session:
            result = await session.execute(
                select(Subscription).where(
                    Subscription.organization_id == organization_id,
                    Subscription.status.in_(ACTIVE_SUBSCRIPTION_STATUSES),
                )
            )
            return [SubscriptionSnapshot.model_validate(row) for row in result.scalars().all()]

    async def list_unused_assignments(
        self,
        organization_id: UUID,
        unused_since: datetime,
    ) -> list[UnusedAssignment]:
        """Active assignments of active employees not used since ``unused_since``."""
        async with self._session() as session:
            result = await session.execute(
                select(LicenseAssignment)
                .join(EmployeeRow, LicenseAssignment.employee_id == EmployeeRow.id)
                .where(
                    LicenseAssignment.organization_id == organization_id,
                    LicenseAssignment.status == "active",
                    EmployeeRow.status == EmployeeStatus.ACTIVE.value,
                    or_(
                        LicenseAssignment.last_used_at < unused_since,
                        and_(
                            LicenseAssignment.last_used_at.is_(None),
                            LicenseAssignment.assigned_at < unused_since,
                        ),
                    ),
                )
                .options(
                    selectinload(LicenseAssignment.subscription),
                    selectinload(LicenseAssignment.employee),
                )
            )
            return [
                UnusedAssignment(
                    employee_id=a.employee.id,
                    employee_name=a.employee.name,
                    employee_email=a.employee.email,
                    subscription_id=a.subscription.id,
                    subscription_name=a.subscription.name,
                    price_per_unit=a.subscription.price_per_unit or 0,
                    currency=a.subscription.currency,
                    assigned_at=a.assigned_at,
                    last_used_at=a.last_used_at,
                )
                for a in result.scalars().all()
            ]
