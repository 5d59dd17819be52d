"""
Sync Tasks

Background tasks for syncing employees from identity directories.
"""

import asyncio
import logging
from uuid import UUID

from workers.celery_app import app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run an async function from a sync Celery task."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


@app.task
def sync_directory(provider: str = "google_workspace", mode: str = "auto"):
    """Sync every active integration of a directory provider."""
    logger.info(f"Starting {provider} directory sync ({mode})")
    return _run_async(_async_sync_directory(provider, mode))


@app.task(bind=True, max_retries=3, default_retry_delay=60)
def sync_integration(self, integration_id: str, mode: str = "auto"):
    """Sync a single integration."""
    logger.info(f"Starting sync for integration {integration_id}")
    try:
        return _run_async(_async_sync_integration(UUID(integration_id), mode))
    except Exception as exc:
        logger.error(f"Sync failed for {integration_id}: {exc}")
        raise self.retry(exc=exc)


@app.task
def sync_employee_batch(payload: dict):
    """Reconcile one batch of directory users enqueued by a directory sync."""
    return _run_async(_async_sync_employee_batch(payload))


@app.task
def verify_integration(integration_id: str):
    """Test an integration's directory connection and update its status."""
    return _run_async(_async_verify_integration(UUID(integration_id)))


@app.task
def check_stale_integrations(provider: str = "google_workspace"):
    """Check for integrations that haven't synced recently and resync them."""
    logger.info("Checking for stale integrations")
    _run_async(_async_check_stale(provider))


def build_provider_factory(settings):
    """
    Provider factory for the sync orchestrator.

    Settings supply defaults; per-integration ``config`` overrides them.
    """
    from integrations.directory import create_directory_provider
    from integrations.errors import AuthError

    defaults = {
        "client_id": settings.google_oauth_client_id,
        "client_secret": settings.google_oauth_client_secret,
        "customer_id": settings.google_customer_id,
        "token_refresh_buffer_minutes": settings.token_refresh_buffer_minutes,
        "max_attempts": settings.directory_max_attempts,
        "retry_base_delay": settings.directory_retry_base_delay,
        "retry_max_jitter": settings.directory_retry_max_jitter,
        "timeout": settings.directory_request_timeout,
        "max_page_size": settings.directory_max_page_size,
    }

    def factory(integration, sink):
        if integration.credentials is None:
            raise AuthError(f"Integration {integration.id} has no stored credentials")
        return create_directory_provider(
            integration.provider,
            str(integration.id),
            integration.credentials,
            {**defaults, **(integration.config or {})},
            sink=sink,
        )

    return factory


def _build_orchestrator():
    from backend.config import get_settings
    from backend.db.session import async_session_factory
    from backend.repositories import SqlEmployeeRepository, SqlIntegrationRepository
    from backend.services.reconciler import EmployeeReconciler
    from backend.services.sync_orchestrator import SyncOrchestrator
    from integrations.oauth_manager import TokenEncryption
    from workers.job_queue import CeleryJobQueue

    settings = get_settings()
    integrations = SqlIntegrationRepository(
        async_session_factory, TokenEncryption(settings.encryption_key)
    )
    reconciler = EmployeeReconciler(
        SqlEmployeeRepository(async_session_factory),
        error_report_limit=settings.sync_error_report_limit,
    )
    return SyncOrchestrator(
        integrations,
        reconciler,
        build_provider_factory(settings),
        job_queue=CeleryJobQueue(app),
        batch_size=settings.sync_batch_size,
        page_size=settings.directory_page_size,
        worker_pool_size=settings.sync_worker_pool_size,
        timeout_seconds=settings.sync_timeout_seconds,
        inline_max_users=settings.sync_inline_max_users,
        error_report_limit=settings.sync_error_report_limit,
        stale_after_hours=settings.sync_stale_after_hours,
    )


async def _async_sync_directory(provider: str, mode: str) -> dict:
    from backend.services.sync_orchestrator import SyncMode

    summary = await _build_orchestrator().run(provider, SyncMode(mode))
    for outcome in summary.failed:
        logger.warning(
            f"Directory sync failed for org {outcome.organization_id}: {outcome.message}"
        )
    return summary.model_dump(mode="json")


async def _async_sync_integration(integration_id: UUID, mode: str) -> dict:
    from backend.errors import IntegrationNotFound
    from backend.services.sync_orchestrator import SyncMode

    orchestrator = _build_orchestrator()
    integration = await orchestrator.integrations.find_by_id(integration_id)
    if integration is None:
        raise IntegrationNotFound(integration_id)
    if not integration.is_active:
        return {"error": "Integration is inactive"}

    outcome = await orchestrator.sync_integration(integration, SyncMode(mode))
    return outcome.model_dump(mode="json")


async def _async_sync_employee_batch(payload: dict) -> dict:
    stats = await _build_orchestrator().process_batch_job(payload)
    return stats.counts()


async def _async_verify_integration(integration_id: UUID) -> dict:
    integration = await _build_orchestrator().verify_connection(integration_id)
    return {"status": integration.status.value, "error": integration.last_error}


async def _async_check_stale(provider: str):
    stale = await _build_orchestrator().find_stale_integrations(provider)
    for integration in stale:
        sync_integration.delay(str(integration.id))
