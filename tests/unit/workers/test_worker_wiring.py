"""
Worker Wiring Tests

Tests for the provider factory used by sync tasks and the Celery job queue.
"""

import threading
from types import SimpleNamespace

import pytest

from integrations.directory import GoogleWorkspaceDirectory
from integrations.errors import AuthError
from tests.factories import make_integration
from workers.job_queue import CeleryJobQueue
from workers.tasks.sync_tasks import build_provider_factory


def _settings(**overrides) -> SimpleNamespace:
    values = {
        "google_oauth_client_id": "client-id",
        "google_oauth_client_secret": "client-secret",
        "google_customer_id": "my_customer",
        "token_refresh_buffer_minutes": 5,
        "directory_max_attempts": 5,
        "directory_retry_base_delay": 1.0,
        "directory_retry_max_jitter": 1.0,
        "directory_request_timeout": 30.0,
        "directory_max_page_size": 500,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class _RecordingCelery:
    def __init__(self):
        self.sent: list[tuple[str, dict, str]] = []
        self.threads: list[int] = []

    def send_task(self, name, kwargs=None, queue=None):
        self.sent.append((name, kwargs, queue))
        self.threads.append(threading.get_ident())
        return SimpleNamespace(id=f"task-{len(self.sent)}")


class TestBuildProviderFactory:
    """Tests for build_provider_factory."""

    def test_settings_supply_defaults(self, org_id):
        factory = build_provider_factory(
            _settings(directory_max_attempts=3, directory_max_page_size=200)
        )

        provider = factory(make_integration(org_id), sink=None)

        assert isinstance(provider, GoogleWorkspaceDirectory)
        assert provider.customer_id == "my_customer"
        assert provider.max_attempts == 3
        assert provider.max_page_size == 200
        assert provider.clamp_page_size(500) == 200

    def test_integration_config_overrides_settings(self, org_id):
        factory = build_provider_factory(_settings())
        integration = make_integration(
            org_id, config={"customer_id": "C0123", "include_deleted": True}
        )

        provider = factory(integration, sink=None)

        assert provider.customer_id == "C0123"
        assert provider.include_deleted is True

    def test_missing_credentials_rejected(self, org_id):
        factory = build_provider_factory(_settings())

        with pytest.raises(AuthError):
            factory(make_integration(org_id, credentials=None), sink=None)


class TestCeleryJobQueue:
    @pytest.mark.asyncio
    async def test_enqueue_sends_named_task_with_payload(self):
        app = _RecordingCelery()
        queue = CeleryJobQueue(app)

        await queue.enqueue("sync_employee_batch", {"batch_number": 1})

        assert app.sent == [(
            "workers.tasks.sync_tasks.sync_employee_batch",
            {"payload": {"batch_number": 1}},
            "sync_batches",
        )]

    @pytest.mark.asyncio
    async def test_enqueue_sends_off_the_event_loop_thread(self):
        app = _RecordingCelery()

        await CeleryJobQueue(app).enqueue("sync_employee_batch", {})

        [sender] = app.threads
        assert sender != threading.get_ident()
