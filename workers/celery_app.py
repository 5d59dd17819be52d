"""
Celery Application

Redis-backed Celery app for directory sync and alert generation.

Queues:
- sync: one directory fetch per integration (slow, rate limited)
- sync_batches: reconciliation of enqueued user batches
- alerts: alert generation and cleanup
"""

from celery import Celery
from celery.schedules import crontab

from backend.config import get_settings

settings = get_settings()

app = Celery(
    "licenseguard",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "workers.tasks.sync_tasks",
        "workers.tasks.alert_tasks",
    ],
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # A batch lost with its worker is redelivered; reconciliation is idempotent
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    result_expires=86400,  # 24 hours

    task_default_queue="default",
    task_routes={
        "workers.tasks.sync_tasks.sync_employee_batch": {"queue": "sync_batches"},
        "workers.tasks.sync_tasks.*": {"queue": "sync"},
        "workers.tasks.alert_tasks.*": {"queue": "alerts"},
    },
    task_annotations={
        "workers.tasks.sync_tasks.sync_integration": {"rate_limit": "10/m"},
    },

    # Hard limit leaves room past the per-integration sync timeout to record the failure
    task_soft_time_limit=settings.sync_timeout_seconds + 60,
    task_time_limit=settings.sync_timeout_seconds + 120,
    worker_concurrency=settings.sync_worker_pool_size,
)

app.conf.beat_schedule = {
    "sync-directory-hourly": {
        "task": "workers.tasks.sync_tasks.sync_directory",
        "schedule": crontab(minute=0),
        "options": {"queue": "sync"},
    },
    # Half past, once the hourly sync has landed
    "generate-alerts-hourly": {
        "task": "workers.tasks.alert_tasks.generate_alerts_for_all",
        "schedule": crontab(minute=30),
        "options": {"queue": "alerts"},
    },
    "check-stale-integrations": {
        "task": "workers.tasks.sync_tasks.check_stale_integrations",
        "schedule": crontab(hour=6, minute=0),
        "options": {"queue": "sync"},
    },
    "cleanup-old-alerts": {
        "task": "workers.tasks.alert_tasks.cleanup_old_alerts",
        "schedule": crontab(hour=3, minute=0),
        "options": {"queue": "alerts"},
    },
}

if settings.sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"licenseguard-worker@{settings.app_version}",
        traces_sample_rate=0.1,
        integrations=[CeleryIntegration()],
    )
