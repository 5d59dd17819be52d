"""
Test Configuration and Fixtures

Provides organization IDs and in-memory repositories for service tests.
"""

from uuid import uuid4

import pytest
from cryptography.fernet import Fernet

from integrations.oauth_manager import TokenEncryption
from tests.fakes import (
    FakeJobQueue,
    InMemoryAlertRepository,
    InMemoryEmployeeRepository,
    InMemoryIntegrationRepository,
    InMemorySubscriptionRepository,
)


@pytest.fixture
def org_id():
    return uuid4()


@pytest.fixture
def employee_repo() -> InMemoryEmployeeRepository:
    return InMemoryEmployeeRepository()


@pytest.fixture
def alert_repo() -> InMemoryAlertRepository:
    return InMemoryAlertRepository()


@pytest.fixture
def integration_repo() -> InMemoryIntegrationRepository:
    return InMemoryIntegrationRepository()


@pytest.fixture
def subscription_repo() -> InMemorySubscriptionRepository:
    return InMemorySubscriptionRepository()


@pytest.fixture
def job_queue() -> FakeJobQueue:
    return FakeJobQueue()


@pytest.fixture
def encryption() -> TokenEncryption:
    return TokenEncryption(Fernet.generate_key())
