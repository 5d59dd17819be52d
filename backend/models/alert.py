"""
Alert Model

Persisted alerts with lifecycle tracking and deduplication key.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base, OrganizationScopedMixin, TimestampMixin


class Alert(OrganizationScopedMixin, TimestampMixin, Base):
    """
    Alert raised for an organization.

    ``(organization_id, alert_key)`` is unique so concurrent generation
    runs cannot insert the same alert twice.
    """

    __tablename__ = "alerts"

    type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="info|warning|critical",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default="pending",
        nullable=False,
        comment="pending|acknowledged|resolved|dismissed",
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    employee_id: Mapped[UUID | None] = mapped_column(nullable=True)
    subscription_id: Mapped[UUID | None] = mapped_column(nullable=True)
    data: Mapped[dict | None] = mapped_column(
        nullable=True,
        comment="Type-specific payload tagged by 'kind'",
    )

    potential_savings: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Monthly savings in currency minor units",
    )
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    acknowledged_at: Mapped[datetime | None] = mapped_column(nullable=True)
    acknowledged_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    dismissed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    dismissed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dismiss_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    snoozed_until: Mapped[datetime | None] = mapped_column(nullable=True)
    snoozed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    alert_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Deterministic deduplication key",
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "alert_key",
            name="uq_alert_org_key",
        ),
        Index("ix_alerts_org_status", "organization_id", "status"),
        Index("ix_alerts_org_type", "organization_id", "type"),
        Index("ix_alerts_employee_id", "employee_id"),
        Index("ix_alerts_subscription_id", "subscription_id"),
    )

    def __repr__(self) -> str:
        return f"<Alert {self.alert_key or self.id} ({self.status})>"
