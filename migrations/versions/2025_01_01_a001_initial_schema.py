"""Initial schema: integrations, employees, subscriptions and alerts

Revision ID: a001
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # === integrations ===
    op.create_table(
        "integrations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("provider", sa.String(30), nullable=False, comment="Directory provider: google_workspace"),
        sa.Column("access_token_encrypted", sa.LargeBinary(), nullable=True),
        sa.Column("refresh_token_encrypted", sa.LargeBinary(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_status", sa.String(20), nullable=True),
        sa.Column("last_sync_message", sa.Text(), nullable=True),
        sa.Column("sync_stats", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("config", postgresql.JSONB(), nullable=False, server_default="{}"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "provider", name="uq_org_provider"),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'error', 'disabled')",
            name="valid_integration_status",
        ),
        sa.CheckConstraint(
            "last_sync_status IS NULL OR last_sync_status IN ('success', 'partial', 'error')",
            name="valid_last_sync_status",
        ),
    )
    op.create_index("ix_integrations_organization_id", "integrations", ["organization_id"])
    op.create_index("ix_integrations_provider_status", "integrations", ["provider", "status"])

    # === employees ===
    op.create_table(
        "employees",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=True, comment="User ID in the directory provider"),
        sa.Column("external_provider", sa.String(30), nullable=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("department", sa.String(255), nullable=True),
        sa.Column("manager_email", sa.String(320), nullable=True),
        sa.Column("hired_at", sa.Date(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("offboarded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "external_id", name="uq_employee_org_external_id"),
        sa.CheckConstraint(
            "status IN ('active', 'suspended', 'offboarded')",
            name="valid_employee_status",
        ),
    )
    op.create_index("ix_employees_org_email", "employees", ["organization_id", "email"])
    op.create_index("ix_employees_org_status", "employees", ["organization_id", "status"])

    # === subscriptions ===
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(30), nullable=False, server_default="other"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("price_per_unit", sa.BigInteger(), nullable=True),
        sa.Column("total_monthly_cost", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("previous_monthly_cost", sa.BigInteger(), nullable=True),
        sa.Column("total_seats", sa.Integer(), nullable=True),
        sa.Column("used_seats", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("seats_unlimited", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("renewal_date", sa.Date(), nullable=True),
        sa.Column("trial_end_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('active', 'trial', 'suspended', 'cancelled', 'expired')",
            name="valid_subscription_status",
        ),
    )
    op.create_index("ix_subscriptions_org_status", "subscriptions", ["organization_id", "status"])
    op.create_index("ix_subscriptions_org_category", "subscriptions", ["organization_id", "category"])

    # === license_assignments ===
    op.create_table(
        "license_assignments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column(
            "subscription_id", sa.Uuid(),
            sa.ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "employee_id", sa.Uuid(),
            sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subscription_id", "employee_id", name="uq_assignment_subscription_employee"),
    )
    op.create_index("ix_license_assignments_org_status", "license_assignments", ["organization_id", "status"])
    op.create_index("ix_license_assignments_employee_id", "license_assignments", ["employee_id"])

    # === alerts ===
    op.create_table(
        "alerts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("severity", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("employee_id", sa.Uuid(), nullable=True),
        sa.Column("subscription_id", sa.Uuid(), nullable=True),
        sa.Column("data", postgresql.JSONB(), nullable=True),
        sa.Column("potential_savings", sa.BigInteger(), nullable=True, comment="Currency minor units"),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_by", sa.String(255), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(255), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("dismissed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dismissed_by", sa.String(255), nullable=True),
        sa.Column("dismiss_reason", sa.Text(), nullable=True),
        sa.Column("snoozed_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("snoozed_by", sa.String(255), nullable=True),
        sa.Column("alert_key", sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "alert_key", name="uq_alert_org_key"),
        sa.CheckConstraint(
            "type IN ('offboarding', 'renewal_upcoming', 'unused_license', 'low_utilization', "
            "'duplicate_tool', 'cost_anomaly', 'seat_shortage', 'trial_ending')",
            name="valid_alert_type",
        ),
        sa.CheckConstraint("severity IN ('info', 'warning', 'critical')", name="valid_alert_severity"),
        sa.CheckConstraint(
            "status IN ('pending', 'acknowledged', 'resolved', 'dismissed')",
            name="valid_alert_status",
        ),
    )
    op.create_index("ix_alerts_org_status", "alerts", ["organization_id", "status"])
    op.create_index("ix_alerts_org_type", "alerts", ["organization_id", "type"])
    op.create_index("ix_alerts_employee_id", "alerts", ["employee_id"])
    op.create_index("ix_alerts_subscription_id", "alerts", ["subscription_id"])


def downgrade() -> None:
    op.drop_table("alerts")
    op.drop_table("license_assignments")
    op.drop_table("subscriptions")
    op.drop_table("employees")
    op.drop_table("integrations")
