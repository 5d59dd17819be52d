"""
Subscription Models

SaaS subscriptions and the per-employee license assignments on them.
Owned by the subscriptions service; read here for alert generation.
"""

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import BigInteger, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, OrganizationScopedMixin, TimestampMixin

if TYPE_CHECKING:
    from backend.models.employee import Employee


class Subscription(OrganizationScopedMixin, TimestampMixin, Base):
    __tablename__ = "subscriptions"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(30), default="other", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default="active",
        nullable=False,
        comment="active|trial|suspended|cancelled|expired",
    )
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    # Amounts in currency minor units
    price_per_unit: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    total_monthly_cost: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    previous_monthly_cost: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Monthly cost before the latest change, for anomaly detection",
    )

    total_seats: Mapped[int | None] = mapped_column(nullable=True)
    used_seats: Mapped[int] = mapped_column(default=0, nullable=False)
    seats_unlimited: Mapped[bool] = mapped_column(default=False, nullable=False)

    auto_renew: Mapped[bool] = mapped_column(default=True, nullable=False)
    renewal_date: Mapped[date | None] = mapped_column(nullable=True)
    trial_end_date: Mapped[date | None] = mapped_column(nullable=True)

    assignments: Mapped[list["LicenseAssignment"]] = relationship(
        back_populates="subscription",
    )

    __table_args__ = (
        Index("ix_subscriptions_org_status", "organization_id", "status"),
        Index("ix_subscriptions_org_category", "organization_id", "category"),
    )

    def __repr__(self) -> str:
        return f"<Subscription {self.name} ({self.status})>"


class LicenseAssignment(OrganizationScopedMixin, TimestampMixin, Base):
    """A seat on a subscription held by one employee."""

    __tablename__ = "license_assignments"

    subscription_id: Mapped[UUID] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default="active",
        nullable=False,
        comment="active|revoked",
    )
    assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(nullable=True)

    subscription: Mapped["Subscription"] = relationship(back_populates="assignments")
    employee: Mapped["Employee"] = relationship()

    __table_args__ = (
        UniqueConstraint(
            "subscription_id",
            "employee_id",
            name="uq_assignment_subscription_employee",
        ),
        Index("ix_license_assignments_org_status", "organization_id", "status"),
        Index("ix_license_assignments_employee_id", "employee_id"),
    )
