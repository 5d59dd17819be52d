"""
Integration Schemas

Directory connector state: connection status, credentials and sync tracking.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from integrations.oauth_manager import OAuthTokens


class IntegrationStatus(str, Enum):
    PENDING = "pending"  # OAuth flow not completed yet
    ACTIVE = "active"
    ERROR = "error"  # Credentials rejected, needs reconnect
    DISABLED = "disabled"  # Soft-deleted


class SyncStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class IntegrationDisabledError(Exception):
    def __init__(self, integration_id: UUID):
        self.integration_id = integration_id
        super().__init__(f"Integration {integration_id} is disabled")


class Integration(BaseModel):
    """Organization-scoped directory connector."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    organization_id: UUID
    provider: str
    status: IntegrationStatus = IntegrationStatus.PENDING
    credentials: OAuthTokens | None = None
    config: dict = Field(default_factory=dict)

    last_sync_at: datetime | None = None
    last_sync_status: SyncStatus | None = None
    last_sync_message: str | None = None
    sync_stats: dict = Field(default_factory=dict)
    last_error: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == IntegrationStatus.ACTIVE

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def _ensure_enabled(self) -> None:
        if self.status == IntegrationStatus.DISABLED:
            raise IntegrationDisabledError(self.id)

    def activate(self) -> None:
        """Move to active after a successful token exchange or connection test."""
        self._ensure_enabled()
        self.status = IntegrationStatus.ACTIVE
        self.last_error = None
        self._touch()

    def disable(self) -> None:
        if self.status == IntegrationStatus.DISABLED:
            return
        self.status = IntegrationStatus.DISABLED
        self._touch()

    def mark_error(self, message: str) -> None:
        self._ensure_enabled()
        self.status = IntegrationStatus.ERROR
        self.last_error = message
        self._touch()

    def update_credentials(self, tokens: OAuthTokens) -> None:
        self.credentials = tokens
        self._touch()

    def record_sync(
        self,
        status: SyncStatus,
        message: str,
        stats: dict,
        at: datetime | None = None,
    ) -> None:
        """Record the outcome of a sync attempt."""
        self.last_sync_at = at or datetime.now(timezone.utc)
        self.last_sync_status = status
        self.last_sync_message = message
        self.sync_stats = stats
        self._touch()

    def record_batch_progress(
        self,
        batch_stats: dict,
        total_batches: int,
        total_users: int,
    ) -> None:
        """Fold one completed batch into the running sync progress."""
        batches_completed = self.sync_stats.get("batchesCompleted", 0) + 1
        progress = round(batches_completed / total_batches * 100) if total_batches else 100
        self.sync_stats = {
            **self.sync_stats,
            "batchesCompleted": batches_completed,
            "totalBatches": total_batches,
            "totalUsers": total_users,
            "progressPercent": progress,
            "lastBatchStats": batch_stats,
            "batchErrors": self.sync_stats.get("batchErrors", 0) + batch_stats.get("errors", 0),
        }
        if batch_stats.get("errors"):
            self.last_sync_status = SyncStatus.PARTIAL
        if batches_completed >= total_batches:
            self.last_sync_message = f"Sync completed: {total_users} users processed"
        else:
            self.last_sync_message = (
                f"Processing: {batches_completed}/{total_batches} batches ({progress}%)"
            )
        self._touch()

    def is_sync_overdue(self, threshold_hours: int = 2, now: datetime | None = None) -> bool:
        if not self.last_sync_at:
            return True
        now = now or datetime.now(timezone.utc)
        return now - self.last_sync_at > timedelta(hours=threshold_hours)
