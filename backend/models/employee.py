"""
Employee Model

Employees mirrored from the organization's identity directory.
"""

from datetime import date, datetime

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base, OrganizationScopedMixin, TimestampMixin
from backend.schemas.employee import EmployeeStatus


class Employee(OrganizationScopedMixin, TimestampMixin, Base):
    """
    Employee record kept in sync with the directory.

    ``external_id`` is the provider-issued user ID and the primary match
    key; it is unique per organization. Email is the fallback match key.
    """

    __tablename__ = "employees"

    external_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="User ID in the directory provider",
    )
    external_provider: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
        comment="Directory the external_id belongs to",
    )

    email: Mapped[str] = mapped_column(String(320), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    department: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Department name or org unit path",
    )
    manager_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    hired_at: Mapped[date | None] = mapped_column(nullable=True)
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=EmployeeStatus.ACTIVE.value,
        nullable=False,
        comment="active|suspended|offboarded",
    )
    offboarded_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
        comment="Set when the directory first reports the user as gone",
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "external_id",
            name="uq_employee_org_external_id",
        ),
        Index("ix_employees_org_email", "organization_id", "email"),
        Index("ix_employees_org_status", "organization_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Employee {self.email} ({self.status}) org={self.organization_id}>"
