"""
Integration Model

OAuth connections to identity directories (Google Workspace).
Tracks token lifecycle and sync status.
"""

from datetime import datetime

from sqlalchemy import Index, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base, OrganizationScopedMixin, TimestampMixin
from backend.schemas.integration import IntegrationStatus


class Integration(OrganizationScopedMixin, TimestampMixin, Base):
    """
    Directory connection for one organization.

    OAuth tokens are Fernet-encrypted at rest. Integrations are never
    hard-deleted; ``status = disabled`` is the soft delete.
    """

    __tablename__ = "integrations"

    provider: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="Directory provider: google_workspace",
    )

    # OAuth tokens (encrypted at rest using Fernet)
    access_token_encrypted: Mapped[bytes | None] = mapped_column(
        LargeBinary,
        nullable=True,
        comment="Fernet-encrypted OAuth access token",
    )
    refresh_token_encrypted: Mapped[bytes | None] = mapped_column(
        LargeBinary,
        nullable=True,
        comment="Fernet-encrypted OAuth refresh token",
    )
    token_expires_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
        comment="Token expiration timestamp",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=IntegrationStatus.PENDING.value,
        nullable=False,
        comment="Connection status: pending|active|error|disabled",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last connection error if status is 'error'",
    )

    # Sync tracking
    last_sync_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
        comment="Timestamp of last sync attempt",
    )
    last_sync_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Status of last sync: success|partial|error",
    )
    last_sync_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Human-readable outcome of the last sync",
    )
    sync_stats: Mapped[dict] = mapped_column(
        default=dict,
        nullable=False,
        comment="Counters and batch progress from the last sync",
    )

    config: Mapped[dict] = mapped_column(
        default=dict,
        nullable=False,
        comment="Provider-specific configuration (e.g., customer_id)",
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "provider",
            name="uq_org_provider",
        ),
        Index("ix_integrations_organization_id", "organization_id"),
        Index("ix_integrations_provider_status", "provider", "status"),
    )

    def __repr__(self) -> str:
        return f"<Integration {self.provider} ({self.status}) for org={self.organization_id}>"
