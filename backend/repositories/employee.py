"""
Employee Repository

SQLAlchemy storage for directory-synced employees.
"""

from uuid import UUID

from sqlalchemy import func, select

from backend.errors import PersistenceError
from backend.models.employee import Employee as EmployeeRow
from backend.repositories.base import SqlRepository
from backend.schemas.employee import Employee, EmployeeChanges


def employee_from_row(row: EmployeeRow) -> Employee:
    return Employee.model_validate(row)


class SqlEmployeeRepository(SqlRepository):
    async def find_by_id(self, employee_id: UUID) -> Employee | None:
        async with self._session() as session:
            row = await session.get(EmployeeRow, employee_id)
            return employee_from_row(row) if row else None

    async def find_by_external_id_or_email(
        self,
        organization_id: UUID,
        external_id: str,
        email: str,
    ) -> Employee | None:
        """Match on external ID first, then fall back to a case-insensitive email match."""
        async with self._session() as session:
            result = await session.execute(
                select(EmployeeRow).where(
                    EmployeeRow.organization_id == organization_id,
                    EmployeeRow.external_id == external_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                result = await session.execute(
                    select(EmployeeRow)
                    .where(
                        EmployeeRow.organization_id == organization_id,
                        func.lower(EmployeeRow.email) == email.lower(),
                    )
                    .order_by(EmployeeRow.created_at)
                    .limit(1)
                )
                row = result.scalar_one_or_none()
            return employee_from_row(row) if row else None

    async def create(self, employee: Employee) -> Employee:
        async with self._session() as session:
            row = EmployeeRow(
                id=employee.id,
                organization_id=employee.organization_id,
                external_id=employee.external_id,
                external_provider=employee.external_provider,
                email=employee.email,
                name=employee.name,
                title=employee.title,
                phone=employee.phone,
                department=employee.department,
                manager_email=employee.manager_email,
                hired_at=employee.hired_at,
                last_login_at=employee.last_login_at,
                status=employee.status.value,
                offboarded_at=employee.offboarded_at,
            )
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return employee_from_row(row)

    async def update(self, employee_id: UUID, changes: EmployeeChanges) -> Employee:
        """Write all tracked fields in one statement. A None offboarded_at keeps the stored value."""
        async with self._session() as session:
            row = await session.get(EmployeeRow, employee_id, with_for_update=True)
            if row is None:
                raise PersistenceError(f"Employee {employee_id} not found")

            values = changes.model_dump(exclude={"offboarded_at"})
            values["status"] = changes.status.value
            for field, value in values.items():
                setattr(row, field, value)
            if changes.offboarded_at is not None:
                row.offboarded_at = changes.offboarded_at

            await session.flush()
            await session.refresh(row)
            return employee_from_row(row)
