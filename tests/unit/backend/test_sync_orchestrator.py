"""
Sync Orchestrator Unit Tests

Tests for pagination and batching, orchestrate/inline/auto modes,
per-integration failure isolation, timeouts, batch job progress and
connection verification.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from backend.errors import IntegrationNotFound
from backend.schemas.integration import IntegrationStatus, SyncStatus
from backend.services.reconciler import EmployeeReconciler
from backend.services.sync_orchestrator import (
    SYNC_BATCH_JOB,
    BatchJobPayload,
    IntegrationTokenSink,
    SyncMode,
    SyncOrchestrator,
    partition_batches,
)
from integrations.errors import AuthError, TransientServerError
from integrations.oauth_manager import TokenRefreshManager
from tests.factories import make_directory_user, make_integration, make_tokens
from tests.fakes import (
    FakeDirectory,
    FakeJobQueue,
    InMemoryEmployeeRepository,
    InMemoryIntegrationRepository,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _users(count: int, prefix: str = "u") -> list:
    return [
        make_directory_user(external_id=f"{prefix}-{i}", email=f"{prefix}{i}@x.com")
        for i in range(count)
    ]


def _pages(*sizes: int) -> list[list]:
    """Directory pages of the given sizes with globally unique users u0, u1, ..."""
    users = _users(sum(sizes))
    pages, start = [], 0
    for size in sizes:
        pages.append(users[start:start + size])
        start += size
    return pages


def _orchestrator(
    integrations: InMemoryIntegrationRepository,
    directories: dict,
    employees: InMemoryEmployeeRepository | None = None,
    **kwargs,
) -> SyncOrchestrator:
    """Orchestrator whose provider factory serves ``directories[integration.id]``."""
    return SyncOrchestrator(
        integrations,
        EmployeeReconciler(employees or InMemoryEmployeeRepository()),
        lambda integration, sink: directories[integration.id],
        **kwargs,
    )


class _SlowEmployeeRepository(InMemoryEmployeeRepository):
    """Employee store whose inserts take ``delay`` seconds."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def create(self, employee):
        await asyncio.sleep(self.delay)
        return await super().create(employee)


# ---------------------------------------------------------------------------
# Batching
# ---------------------------------------------------------------------------

class TestPartitionBatches:
    def test_last_batch_holds_remainder(self):
        batches = partition_batches(_users(1037), 100)
        assert len(batches) == 11
        assert [len(b) for b in batches[-2:]] == [100, 37]

    def test_empty_input(self):
        assert partition_batches([], 100) == []

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            partition_batches(_users(3), 0)


# ---------------------------------------------------------------------------
# Inline mode
# ---------------------------------------------------------------------------

class TestInlineSync:
    """Tests for SyncOrchestrator in inline mode."""

    @pytest.mark.asyncio
    async def test_three_pages_reconciled_in_eleven_batches(self, org_id):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        employees = InMemoryEmployeeRepository()
        directory = FakeDirectory(_pages(500, 500, 37))
        orchestrator = _orchestrator(
            integrations, {integration.id: directory}, employees, batch_size=100
        )

        summary = await orchestrator.run(mode=SyncMode.INLINE)

        [outcome] = summary.outcomes
        assert outcome.status == SyncStatus.SUCCESS
        assert outcome.mode == SyncMode.INLINE
        assert len(directory.page_requests) == 3
        assert [token for _, token in directory.page_requests] == [None, "1", "2"]
        assert len(employees.employees) == 1037

        stored = integrations.stored(integration.id)
        assert stored.last_sync_status == SyncStatus.SUCCESS
        assert stored.last_sync_message == "Sync completed successfully"
        assert stored.sync_stats["created"] == 1037
        assert stored.sync_stats["errors"] == 0
        assert stored.last_sync_at is not None
        assert directory.closed

    @pytest.mark.asyncio
    async def test_second_run_skips_everything(self, org_id):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        employees = InMemoryEmployeeRepository()
        orchestrator = _orchestrator(
            integrations, {integration.id: FakeDirectory(_pages(120))}, employees
        )

        await orchestrator.run(mode=SyncMode.INLINE)
        await orchestrator.run(mode=SyncMode.INLINE)

        stats = integrations.stored(integration.id).sync_stats
        assert stats["skipped"] == 120
        assert stats["created"] == 0
        assert employees.updates == 0

    @pytest.mark.asyncio
    async def test_user_failures_make_sync_partial(self, org_id):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        employees = InMemoryEmployeeRepository(fail_on_emails={"u3@x.com", "u7@x.com"})
        orchestrator = _orchestrator(
            integrations, {integration.id: FakeDirectory(_pages(10))}, employees
        )

        [outcome] = (await orchestrator.run(mode=SyncMode.INLINE)).outcomes

        assert outcome.status == SyncStatus.PARTIAL
        assert outcome.message == "Completed with 2 errors"
        stored = integrations.stored(integration.id)
        assert stored.sync_stats["created"] == 8
        assert len(stored.sync_stats["errorSamples"]) == 2

    @pytest.mark.asyncio
    async def test_no_integrations_is_a_noop(self):
        summary = await _orchestrator(InMemoryIntegrationRepository(), {}).run()
        assert summary.outcomes == []
        assert summary.completed_at is not None

    @pytest.mark.asyncio
    async def test_inactive_integrations_not_synced(self, org_id):
        disabled = make_integration(org_id, status=IntegrationStatus.DISABLED)
        summary = await _orchestrator(InMemoryIntegrationRepository([disabled]), {}).run()
        assert summary.outcomes == []


# ---------------------------------------------------------------------------
# Orchestrate mode
# ---------------------------------------------------------------------------

class TestOrchestrateSync:
    """Tests for batch fan-out and batch job processing."""

    @pytest.mark.asyncio
    async def test_enqueues_one_job_per_batch(self, org_id, job_queue):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        orchestrator = _orchestrator(
            integrations,
            {integration.id: FakeDirectory(_pages(500, 500, 37))},
            job_queue=job_queue,
            batch_size=100,
        )

        [outcome] = (await orchestrator.run(mode=SyncMode.ORCHESTRATE)).outcomes

        assert outcome.status == SyncStatus.SUCCESS
        assert outcome.mode == SyncMode.ORCHESTRATE
        assert len(job_queue.jobs) == 11
        assert {name for name, _ in job_queue.jobs} == {SYNC_BATCH_JOB}

        payloads = [BatchJobPayload.model_validate(p) for _, p in job_queue.jobs]
        assert [p.batch_number for p in payloads] == list(range(1, 12))
        assert len(payloads[-1].users) == 37
        assert all(p.total_batches == 11 and p.total_users == 1037 for p in payloads)
        assert all(p.integration_id == integration.id for p in payloads)

        stored = integrations.stored(integration.id)
        assert stored.last_sync_status == SyncStatus.SUCCESS
        assert stored.sync_stats["totalUsers"] == 1037
        assert stored.sync_stats["totalBatches"] == 11
        assert stored.sync_stats["batchSize"] == 100

    @pytest.mark.asyncio
    async def test_batch_jobs_accumulate_progress(self, org_id, job_queue):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        employees = InMemoryEmployeeRepository()
        orchestrator = _orchestrator(
            integrations,
            {integration.id: FakeDirectory(_pages(250))},
            employees,
            job_queue=job_queue,
            batch_size=100,
        )
        await orchestrator.run(mode=SyncMode.ORCHESTRATE)

        _, first_payload = job_queue.jobs[0]
        await orchestrator.process_batch_job(first_payload)
        stored = integrations.stored(integration.id)
        assert stored.sync_stats["batchesCompleted"] == 1
        assert stored.sync_stats["progressPercent"] == 33
        assert stored.last_sync_message == "Processing: 1/3 batches (33%)"

        for _, payload in job_queue.jobs[1:]:
            await orchestrator.process_batch_job(payload)

        stored = integrations.stored(integration.id)
        assert stored.sync_stats["batchesCompleted"] == 3
        assert stored.sync_stats["progressPercent"] == 100
        assert stored.last_sync_message == "Sync completed: 250 users processed"
        assert stored.last_sync_status == SyncStatus.SUCCESS
        assert len(employees.employees) == 250

    @pytest.mark.asyncio
    async def test_batch_errors_mark_partial(self, org_id, job_queue):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        employees = InMemoryEmployeeRepository(fail_on_emails={"u1@x.com"})
        orchestrator = _orchestrator(
            integrations, {integration.id: FakeDirectory(_pages(5))}, employees,
            job_queue=job_queue,
        )
        await orchestrator.run(mode=SyncMode.ORCHESTRATE)

        stats = await orchestrator.process_batch_job(job_queue.jobs[0][1])

        assert stats.errors == 1
        stored = integrations.stored(integration.id)
        assert stored.last_sync_status == SyncStatus.PARTIAL
        assert stored.sync_stats["batchErrors"] == 1

    @pytest.mark.asyncio
    async def test_progress_failure_does_not_fail_batch(self, org_id):
        class _BrokenProgress(InMemoryIntegrationRepository):
            async def record_batch_progress(self, *args, **kwargs):
                raise RuntimeError("row locked")

        employees = InMemoryEmployeeRepository()
        orchestrator = _orchestrator(_BrokenProgress(), {}, employees)
        payload = BatchJobPayload(
            integration_id=uuid4(),
            organization_id=org_id,
            users=_users(3),
            batch_number=1,
            total_batches=1,
            total_users=3,
        ).model_dump(mode="json")

        stats = await orchestrator.process_batch_job(payload)

        assert stats.created == 3

    @pytest.mark.asyncio
    async def test_orchestrate_without_queue_is_an_error(self, org_id):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        orchestrator = _orchestrator(integrations, {integration.id: FakeDirectory(_pages(3))})

        [outcome] = (await orchestrator.run(mode=SyncMode.ORCHESTRATE)).outcomes

        assert outcome.status == SyncStatus.ERROR


class TestAutoMode:
    @pytest.mark.asyncio
    async def test_small_directory_runs_inline(self, org_id, job_queue):
        integration = make_integration(org_id)
        orchestrator = _orchestrator(
            InMemoryIntegrationRepository([integration]),
            {integration.id: FakeDirectory(_pages(50))},
            job_queue=job_queue,
            inline_max_users=100,
        )

        [outcome] = (await orchestrator.run()).outcomes

        assert outcome.mode == SyncMode.INLINE
        assert job_queue.jobs == []

    @pytest.mark.asyncio
    async def test_large_directory_is_orchestrated(self, org_id, job_queue):
        integration = make_integration(org_id)
        orchestrator = _orchestrator(
            InMemoryIntegrationRepository([integration]),
            {integration.id: FakeDirectory(_pages(150))},
            job_queue=job_queue,
            inline_max_users=100,
            batch_size=100,
        )

        [outcome] = (await orchestrator.run()).outcomes

        assert outcome.mode == SyncMode.ORCHESTRATE
        assert len(job_queue.jobs) == 2

    @pytest.mark.asyncio
    async def test_without_queue_always_inline(self, org_id):
        integration = make_integration(org_id)
        orchestrator = _orchestrator(
            InMemoryIntegrationRepository([integration]),
            {integration.id: FakeDirectory(_pages(150))},
            inline_max_users=100,
        )

        [outcome] = (await orchestrator.run()).outcomes

        assert outcome.mode == SyncMode.INLINE


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------

class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_failing_integration_does_not_stop_the_next(self):
        broken = make_integration(uuid4())
        healthy = make_integration(uuid4())
        integrations = InMemoryIntegrationRepository([broken, healthy])
        broken_dir = FakeDirectory(list_error=TransientServerError("backend error", 503))
        healthy_dir = FakeDirectory(_pages(5))
        orchestrator = _orchestrator(
            integrations, {broken.id: broken_dir, healthy.id: healthy_dir}
        )

        summary = await orchestrator.run(mode=SyncMode.INLINE)

        statuses = {o.integration_id: o.status for o in summary.outcomes}
        assert statuses == {broken.id: SyncStatus.ERROR, healthy.id: SyncStatus.SUCCESS}
        assert [o.integration_id for o in summary.failed] == [broken.id]

        stored_broken = integrations.stored(broken.id)
        assert stored_broken.last_sync_status == SyncStatus.ERROR
        assert "backend error" in stored_broken.last_sync_message
        assert stored_broken.status == IntegrationStatus.ACTIVE
        assert broken_dir.closed

    @pytest.mark.asyncio
    async def test_auth_failure_marks_integration_error(self, org_id):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        orchestrator = _orchestrator(
            integrations,
            {integration.id: FakeDirectory(list_error=AuthError("invalid_grant", 401))},
        )

        [outcome] = (await orchestrator.run()).outcomes

        assert outcome.status == SyncStatus.ERROR
        stored = integrations.stored(integration.id)
        assert stored.status == IntegrationStatus.ERROR
        assert "invalid_grant" in stored.last_error

    @pytest.mark.asyncio
    async def test_provider_factory_failure_recorded(self, org_id):
        integration = make_integration(org_id, credentials=None)
        integrations = InMemoryIntegrationRepository([integration])

        def factory(integration, sink):
            raise AuthError("no stored credentials")

        orchestrator = SyncOrchestrator(
            integrations, EmployeeReconciler(InMemoryEmployeeRepository()), factory
        )

        [outcome] = (await orchestrator.run()).outcomes

        assert outcome.status == SyncStatus.ERROR
        assert integrations.stored(integration.id).status == IntegrationStatus.ERROR

    @pytest.mark.asyncio
    async def test_timeout_records_error(self, org_id):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        directory = FakeDirectory(_pages(5), page_delay=1.0)
        orchestrator = _orchestrator(
            integrations, {integration.id: directory}, timeout_seconds=0.05
        )

        [outcome] = (await orchestrator.run()).outcomes

        assert outcome.status == SyncStatus.ERROR
        assert "timed out" in outcome.message
        assert integrations.stored(integration.id).last_sync_status == SyncStatus.ERROR
        assert directory.closed

    @pytest.mark.asyncio
    async def test_timeout_mid_batch_keeps_partial_counts(self, org_id):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        employees = _SlowEmployeeRepository(delay=0.01)
        orchestrator = _orchestrator(
            integrations,
            {integration.id: FakeDirectory(_pages(100))},
            employees,
            batch_size=100,
            timeout_seconds=0.3,
        )

        [outcome] = (await orchestrator.run(mode=SyncMode.INLINE)).outcomes

        written = len(employees.employees)
        assert 0 < written < 100
        assert outcome.status == SyncStatus.ERROR
        stored = integrations.stored(integration.id)
        assert stored.last_sync_status == SyncStatus.ERROR
        assert stored.sync_stats["created"] == written
        assert f"({written} users reconciled before abort)" in stored.last_sync_message


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

class TestTokenPersistence:
    @pytest.mark.asyncio
    async def test_sink_updates_integration_and_repository(self, org_id):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        sink = IntegrationTokenSink(integrations, integration)
        tokens = make_tokens(access_token="rotated")

        await sink.on_tokens_refreshed(tokens)

        assert integration.credentials.access_token == "rotated"
        assert integrations.token_updates == [(integration.id, tokens)]

    @pytest.mark.asyncio
    async def test_unsaved_refreshed_tokens_reported_in_message(self, org_id):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        directory = FakeDirectory(_pages(2))

        async def refresher(refresh_token):
            return make_tokens(access_token="new")

        integrations.fail_token_updates = True

        def factory(integration, sink):
            directory.token_manager = TokenRefreshManager(
                integration.credentials, refresher, sink=sink
            )
            return directory

        orchestrator = SyncOrchestrator(
            integrations, EmployeeReconciler(InMemoryEmployeeRepository()), factory
        )
        original_list_users = directory.list_users

        async def list_users_with_refresh(page_size=500, page_token=None):
            await directory.token_manager.refresh()
            return await original_list_users(page_size, page_token)

        directory.list_users = list_users_with_refresh

        [outcome] = (await orchestrator.run(mode=SyncMode.INLINE)).outcomes

        assert outcome.status == SyncStatus.SUCCESS
        assert "refreshed tokens could not be saved" in outcome.message
        # The integration row still gets the new tokens with the sync status
        assert integrations.stored(integration.id).credentials.access_token == "new"


# ---------------------------------------------------------------------------
# Connection checks
# ---------------------------------------------------------------------------

class TestVerifyConnection:
    @pytest.mark.asyncio
    async def test_success_activates(self, org_id):
        integration = make_integration(org_id, status=IntegrationStatus.PENDING)
        integrations = InMemoryIntegrationRepository([integration])
        directory = FakeDirectory()

        result = await _orchestrator(integrations, {integration.id: directory}).verify_connection(
            integration.id
        )

        assert result.status == IntegrationStatus.ACTIVE
        assert integrations.stored(integration.id).status == IntegrationStatus.ACTIVE
        assert directory.closed

    @pytest.mark.asyncio
    async def test_rejected_credentials_mark_error(self, org_id):
        integration = make_integration(org_id)
        integrations = InMemoryIntegrationRepository([integration])
        directory = FakeDirectory(connection_error=AuthError("Not Authorized", 403))

        result = await _orchestrator(integrations, {integration.id: directory}).verify_connection(
            integration.id
        )

        assert result.status == IntegrationStatus.ERROR
        assert "Not Authorized" in result.last_error

    @pytest.mark.asyncio
    async def test_unknown_integration(self):
        with pytest.raises(IntegrationNotFound):
            await _orchestrator(InMemoryIntegrationRepository(), {}).verify_connection(uuid4())


class TestFindStaleIntegrations:
    @pytest.mark.asyncio
    async def test_overdue_and_never_synced(self):
        now = datetime.now(timezone.utc)
        fresh = make_integration(uuid4(), last_sync_at=now - timedelta(minutes=30))
        overdue = make_integration(uuid4(), last_sync_at=now - timedelta(hours=5))
        never = make_integration(uuid4(), last_sync_at=None)
        orchestrator = _orchestrator(
            InMemoryIntegrationRepository([fresh, overdue, never]), {}, stale_after_hours=2
        )

        stale = await orchestrator.find_stale_integrations()

        assert {i.id for i in stale} == {overdue.id, never.id}
