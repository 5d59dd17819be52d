"""
Employee Schemas

Internal employee entity and reconciliation result models.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class EmployeeStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    OFFBOARDED = "offboarded"


class Employee(BaseModel):
    """Employee as stored for an organization."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    organization_id: UUID
    external_id: str | None = None
    external_provider: str | None = None
    email: str
    name: str
    title: str | None = None
    phone: str | None = None
    department: str | None = None
    manager_email: str | None = None
    hired_at: date | None = None
    last_login_at: datetime | None = None
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    offboarded_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class EmployeeChanges(BaseModel):
    """Tracked fields written by reconciliation in a single update."""

    external_id: str
    external_provider: str | None = None
    email: str
    name: str
    title: str | None = None
    phone: str | None = None
    department: str | None = None
    manager_email: str | None = None
    hired_at: date | None = None
    last_login_at: datetime | None = None
    status: EmployeeStatus
    offboarded_at: datetime | None = None


class ReconcileOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class SyncStats(BaseModel):
    """Per-batch or per-run reconciliation counters with a bounded error list."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    error_messages: list[str] = Field(default_factory=list)

    def record(self, outcome: ReconcileOutcome) -> None:
        if outcome == ReconcileOutcome.CREATED:
            self.created += 1
        elif outcome == ReconcileOutcome.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1

    def record_error(self, message: str, limit: int = 10) -> None:
        self.errors += 1
        if len(self.error_messages) < limit:
            self.error_messages.append(message)

    def merge(self, other: "SyncStats", limit: int = 10) -> None:
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.errors += other.errors
        room = max(0, limit - len(self.error_messages))
        self.error_messages.extend(other.error_messages[:room])

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.skipped + self.errors

    def counts(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }
