"""
Directory Sync Orchestrator

Drives a sync for every active integration of a directory provider.

Modes:
- orchestrate: fetch all users, split into batches, enqueue one job per batch
- inline: fetch and reconcile in this run, batches bounded by a worker pool
- auto: inline for small directories, orchestrate otherwise

Integrations are synced one at a time to bound directory API quota usage.
A failure or timeout in one integration is recorded on it and the run
moves on to the next.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol
from uuid import UUID

from pydantic import BaseModel, Field

from backend.errors import IntegrationNotFound
from backend.repositories.base import IntegrationRepository
from backend.schemas.employee import SyncStats
from backend.schemas.integration import Integration, SyncStatus
from backend.services.reconciler import EmployeeReconciler
from integrations.base import DirectoryProvider, DirectoryUser
from integrations.errors import AuthError, DirectoryError
from integrations.oauth_manager import OAuthTokens, TokenSink

logger = logging.getLogger(__name__)

SYNC_BATCH_JOB = "sync_employee_batch"


class SyncMode(str, Enum):
    ORCHESTRATE = "orchestrate"
    INLINE = "inline"
    AUTO = "auto"


class JobQueue(Protocol):
    """Submits background jobs to the job runner."""

    async def enqueue(self, job_name: str, payload: dict) -> None: ...


ProviderFactory = Callable[[Integration, TokenSink], DirectoryProvider]


class BatchJobPayload(BaseModel):
    """Payload of one ``sync_employee_batch`` job. ``batch_number`` is 1-based."""

    integration_id: UUID
    organization_id: UUID
    users: list[DirectoryUser]
    batch_number: int
    total_batches: int
    total_users: int


class IntegrationSyncOutcome(BaseModel):
    integration_id: UUID
    organization_id: UUID
    status: SyncStatus
    mode: SyncMode | None = None
    message: str
    stats: dict = Field(default_factory=dict)


class SyncRunSummary(BaseModel):
    provider: str
    started_at: datetime
    completed_at: datetime | None = None
    outcomes: list[IntegrationSyncOutcome] = Field(default_factory=list)

    @property
    def failed(self) -> list[IntegrationSyncOutcome]:
        return [o for o in self.outcomes if o.status == SyncStatus.ERROR]


class IntegrationTokenSink:
    """Persists refreshed OAuth tokens for one integration."""

    def __init__(self, integrations: IntegrationRepository, integration: Integration):
        self.integrations = integrations
        self.integration = integration

    async def on_tokens_refreshed(self, tokens: OAuthTokens) -> None:
        logger.info(f"Persisting refreshed OAuth tokens for integration {self.integration.id}")
        self.integration.update_credentials(tokens)
        await self.integrations.update_tokens(self.integration.id, tokens)


def partition_batches(users: list[DirectoryUser], batch_size: int) -> list[list[DirectoryUser]]:
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [users[i:i + batch_size] for i in range(0, len(users), batch_size)]


class SyncOrchestrator:
    """
    Fetches directory users for each integration and gets them reconciled.

    Either hands batches to the job queue (``orchestrate``) or reconciles
    them here (``inline``). Per-integration outcome is written back to the
    integration as success, partial or error.
    """

    def __init__(
        self,
        integrations: IntegrationRepository,
        reconciler: EmployeeReconciler,
        provider_factory: ProviderFactory,
        job_queue: JobQueue | None = None,
        batch_size: int = 100,
        page_size: int = 500,
        worker_pool_size: int = 4,
        timeout_seconds: float = 900,
        inline_max_users: int = 1000,
        error_report_limit: int = 10,
        stale_after_hours: int = 2,
    ):
        self.integrations = integrations
        self.reconciler = reconciler
        self.provider_factory = provider_factory
        self.job_queue = job_queue
        self.batch_size = batch_size
        self.page_size = page_size
        self.worker_pool_size = worker_pool_size
        self.timeout_seconds = timeout_seconds
        self.inline_max_users = inline_max_users
        self.error_report_limit = error_report_limit
        self.stale_after_hours = stale_after_hours

    async def run(
        self,
        provider: str = "google_workspace",
        mode: SyncMode = SyncMode.AUTO,
    ) -> SyncRunSummary:
        """Sync every active integration of ``provider``, one after another."""
        summary = SyncRunSummary(provider=provider, started_at=datetime.now(timezone.utc))

        integrations = await self.integrations.find_active_by_provider(provider)
        if not integrations:
            logger.info(f"No active {provider} integrations found")
        else:
            logger.info(f"Found {len(integrations)} {provider} integration(s)")

        for integration in integrations:
            try:
                outcome = await self.sync_integration(integration, mode)
            except Exception as e:
                # Recording the failure itself failed; keep going with the next integration
                logger.error(
                    f"Failed to sync integration {integration.id} "
                    f"for org {integration.organization_id}: {e}"
                )
                outcome = IntegrationSyncOutcome(
                    integration_id=integration.id,
                    organization_id=integration.organization_id,
                    status=SyncStatus.ERROR,
                    message=str(e),
                )
            summary.outcomes.append(outcome)

        summary.completed_at = datetime.now(timezone.utc)
        logger.info(
            f"{provider} directory sync completed: {len(summary.outcomes)} integration(s), "
            f"{len(summary.failed)} failed"
        )
        return summary

    async def sync_integration(
        self,
        integration: Integration,
        mode: SyncMode = SyncMode.AUTO,
    ) -> IntegrationSyncOutcome:
        """Sync one integration under the configured timeout."""
        logger.info(
            f"Syncing {integration.provider} for organization {integration.organization_id}"
        )
        stats = SyncStats()
        provider: DirectoryProvider | None = None
        try:
            provider = self.provider_factory(
                integration, IntegrationTokenSink(self.integrations, integration)
            )
            return await asyncio.wait_for(
                self._sync(integration, provider, mode, stats),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            message = (
                f"Sync timed out after {self.timeout_seconds}s "
                f"({stats.processed} users reconciled before abort)"
            )
            logger.error(f"Integration {integration.id}: {message}")
            return await self._record_error(integration, message, stats)
        except AuthError as e:
            logger.error(f"Integration {integration.id} credentials rejected: {e}")
            integration.mark_error(str(e))
            return await self._record_error(integration, str(e), stats)
        except Exception as e:
            logger.error(
                f"Sync failed for integration {integration.id} "
                f"(org={integration.organization_id}): {e}"
            )
            return await self._record_error(integration, str(e), stats)
        finally:
            if provider is not None:
                await provider.close()

    async def _sync(
        self,
        integration: Integration,
        provider: DirectoryProvider,
        mode: SyncMode,
        stats: SyncStats,
    ) -> IntegrationSyncOutcome:
        users = await provider.fetch_all_users(page_size=self.page_size)
        batches = partition_batches(users, self.batch_size)
        logger.info(
            f"Fetched {len(users)} users in {len(batches)} batch(es) "
            f"for integration {integration.id}"
        )

        mode = self._resolve_mode(mode, len(users))
        if mode == SyncMode.ORCHESTRATE:
            status, message, run_stats = await self._enqueue_batches(integration, users, batches)
        else:
            status, message, run_stats = await self._reconcile_inline(integration, batches, stats)

        if provider.token_manager and provider.token_manager.last_persistence_error:
            message = (
                f"{message}; refreshed tokens could not be saved: "
                f"{provider.token_manager.last_persistence_error}"
            )

        if mode == SyncMode.INLINE:
            integration.record_sync(status, message, run_stats)
            await self.integrations.save(integration)

        return IntegrationSyncOutcome(
            integration_id=integration.id,
            organization_id=integration.organization_id,
            status=status,
            mode=mode,
            message=message,
            stats=run_stats,
        )

    def _resolve_mode(self, mode: SyncMode, user_count: int) -> SyncMode:
        if mode != SyncMode.AUTO:
            return mode
        if self.job_queue is None or user_count <= self.inline_max_users:
            return SyncMode.INLINE
        return SyncMode.ORCHESTRATE

    async def _enqueue_batches(
        self,
        integration: Integration,
        users: list[DirectoryUser],
        batches: list[list[DirectoryUser]],
    ) -> tuple[SyncStatus, str, dict]:
        if self.job_queue is None:
            raise RuntimeError("Orchestrate mode requires a job queue")

        run_stats = {
            "totalUsers": len(users),
            "totalBatches": len(batches),
            "batchSize": self.batch_size,
            "batchesCompleted": 0,
            "progressPercent": 0 if batches else 100,
        }
        message = f"Enqueued {len(batches)} batch(es) for {len(users)} users"
        # Saved before enqueueing so fast batch jobs add progress on top of it
        integration.record_sync(SyncStatus.SUCCESS, message, run_stats)
        await self.integrations.save(integration)

        for number, batch in enumerate(batches, start=1):
            payload = BatchJobPayload(
                integration_id=integration.id,
                organization_id=integration.organization_id,
                users=batch,
                batch_number=number,
                total_batches=len(batches),
                total_users=len(users),
            )
            await self.job_queue.enqueue(SYNC_BATCH_JOB, payload.model_dump(mode="json"))

        logger.info(f"Integration {integration.id}: {message}")
        return SyncStatus.SUCCESS, message, run_stats

    async def _reconcile_inline(
        self,
        integration: Integration,
        batches: list[list[DirectoryUser]],
        stats: SyncStats,
    ) -> tuple[SyncStatus, str, dict]:
        pool = asyncio.Semaphore(self.worker_pool_size)

        async def run_batch(batch: list[DirectoryUser]) -> None:
            async with pool:
                await self.reconciler.reconcile_batch(
                    integration.organization_id, batch, stats
                )

        await asyncio.gather(*(run_batch(batch) for batch in batches))

        if stats.errors:
            status = SyncStatus.PARTIAL
            message = f"Completed with {stats.errors} errors"
            logger.warning(
                f"Integration {integration.id} sync had {stats.errors} errors: "
                f"{stats.error_messages}"
            )
        else:
            status = SyncStatus.SUCCESS
            message = "Sync completed successfully"
        logger.info(f"Sync completed for org {integration.organization_id}: {stats.counts()}")
        return status, message, {**stats.counts(), "errorSamples": stats.error_messages}

    async def _record_error(
        self,
        integration: Integration,
        message: str,
        stats: SyncStats,
    ) -> IntegrationSyncOutcome:
        integration.record_sync(
            SyncStatus.ERROR,
            message,
            {**stats.counts(), "errorSamples": stats.error_messages},
        )
        await self.integrations.save(integration)
        return IntegrationSyncOutcome(
            integration_id=integration.id,
            organization_id=integration.organization_id,
            status=SyncStatus.ERROR,
            message=message,
            stats=integration.sync_stats,
        )

    async def process_batch_job(self, payload: dict) -> SyncStats:
        """Reconcile one enqueued batch and add it to the integration's progress."""
        job = BatchJobPayload.model_validate(payload)
        logger.info(
            f"Processing batch {job.batch_number}/{job.total_batches} "
            f"({len(job.users)} users) for org {job.organization_id}"
        )

        stats = await self.reconciler.reconcile_batch(job.organization_id, job.users)
        logger.info(f"Batch {job.batch_number}/{job.total_batches} completed: {stats.counts()}")

        try:
            await self.integrations.record_batch_progress(
                job.integration_id,
                stats.counts(),
                job.total_batches,
                job.total_users,
            )
        except Exception as e:
            logger.error(
                f"Failed to update progress for integration {job.integration_id} "
                f"after batch {job.batch_number}: {e}"
            )

        if stats.errors:
            logger.warning(
                f"Batch {job.batch_number} had {stats.errors} errors: {stats.error_messages}"
            )
        return stats

    async def verify_connection(self, integration_id: UUID) -> Integration:
        """Test the directory connection and activate or mark the integration."""
        integration = await self.integrations.find_by_id(integration_id)
        if integration is None:
            raise IntegrationNotFound(integration_id)

        provider = self.provider_factory(
            integration, IntegrationTokenSink(self.integrations, integration)
        )
        try:
            await provider.test_connection()
        except DirectoryError as e:
            integration.mark_error(str(e))
        else:
            integration.activate()
            logger.info(f"Integration {integration.id} connected")
        finally:
            await provider.close()

        return await self.integrations.save(integration)

    async def find_stale_integrations(
        self,
        provider: str = "google_workspace",
    ) -> list[Integration]:
        """Active integrations that have not synced within ``stale_after_hours``."""
        integrations = await self.integrations.find_active_by_provider(provider)
        stale = [i for i in integrations if i.is_sync_overdue(self.stale_after_hours)]
        for integration in stale:
            logger.warning(
                f"Stale integration: {integration.provider} "
                f"(org={integration.organization_id}, last_sync={integration.last_sync_at})"
            )
        return stale
