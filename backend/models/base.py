"""
Base Model Classes and Mixins

Declarative base plus the columns every LicenseGuard table shares.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all LicenseGuard models."""

    type_annotation_map: dict[type, Any] = {
        datetime: DateTime(timezone=True),
        dict: JSONB,
    }


class OrganizationScopedMixin:
    """
    UUID primary key plus the owning organization.

    Organizations live in another service, so ``organization_id`` carries
    no foreign key. Every query filters on it.
    """

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        nullable=False,
        comment="Owning organization (managed outside this service)",
    )


class TimestampMixin:
    """Server-side created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
