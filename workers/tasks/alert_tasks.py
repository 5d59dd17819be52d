"""
Alert Tasks

Background tasks for generating and cleaning up license alerts.
"""

import logging
from uuid import UUID

from workers.celery_app import app
from workers.tasks.sync_tasks import _run_async

logger = logging.getLogger(__name__)


@app.task(bind=True, max_retries=2, default_retry_delay=120)
def generate_alerts(self, organization_id: str):
    """Run every alert generator for one organization."""
    logger.info(f"Generating alerts for org {organization_id}")
    try:
        return _run_async(_async_generate_alerts(UUID(organization_id)))
    except Exception as exc:
        logger.error(f"Alert generation failed for org {organization_id}: {exc}")
        raise self.retry(exc=exc)


@app.task
def generate_alerts_for_all():
    """Fan out alert generation to every organization with an active directory."""
    _run_async(_async_generate_alerts_for_all())


@app.task
def cleanup_old_alerts(days_old: int | None = None):
    """Delete resolved and dismissed alerts past the retention window."""
    return _run_async(_async_cleanup_old_alerts(days_old))


def _build_alert_engine():
    from backend.config import get_settings
    from backend.db.session import async_session_factory
    from backend.repositories import SqlAlertRepository, SqlSubscriptionRepository
    from backend.services.alert_engine import AlertEngine

    settings = get_settings()
    return AlertEngine(
        SqlAlertRepository(async_session_factory),
        SqlSubscriptionRepository(async_session_factory),
        renewal_alert_days=settings.renewal_alert_days,
        trial_alert_days=settings.trial_alert_days,
        low_utilization_threshold_pct=settings.low_utilization_threshold_pct,
        seat_shortage_threshold_pct=settings.seat_shortage_threshold_pct,
        unused_license_days=settings.unused_license_days,
        cost_anomaly_threshold_pct=settings.cost_anomaly_threshold_pct,
        alert_retention_days=settings.alert_retention_days,
        default_currency=settings.default_currency,
    )


async def _active_organization_ids() -> list[UUID]:
    from backend.config import get_settings
    from backend.db.session import async_session_factory
    from backend.repositories import SqlIntegrationRepository
    from integrations.oauth_manager import TokenEncryption

    integrations = SqlIntegrationRepository(
        async_session_factory, TokenEncryption(get_settings().encryption_key)
    )
    return await integrations.list_active_organization_ids()


async def _async_generate_alerts(organization_id: UUID) -> dict:
    engine = _build_alert_engine()
    counts = await engine.generate_all(organization_id)
    savings = await engine.calculate_potential_savings(organization_id)
    return {"alerts": counts, "potential_savings": savings}


async def _async_generate_alerts_for_all():
    org_ids = await _active_organization_ids()
    logger.info(f"Scheduling alert generation for {len(org_ids)} organization(s)")
    for org_id in org_ids:
        generate_alerts.delay(str(org_id))


async def _async_cleanup_old_alerts(days_old: int | None) -> dict:
    engine = _build_alert_engine()
    deleted = {}
    for org_id in await _active_organization_ids():
        try:
            deleted[str(org_id)] = await engine.delete_old_alerts(org_id, days_old)
        except Exception as e:
            logger.error(f"Alert cleanup failed for org {org_id}: {e}")
    return deleted
