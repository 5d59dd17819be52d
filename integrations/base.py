"""
Base Directory Integration

Provider-agnostic directory data models and the abstract provider contract.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from integrations.oauth_manager import TokenRefreshManager


class DirectoryUserStatus(str, Enum):
    """Account states a directory may report."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    ARCHIVED = "archived"
    DELETED = "deleted"


class DirectoryUser(BaseModel):
    """Normalized user record from any directory provider."""

    external_id: str = Field(..., description="Stable provider-issued ID")
    email: str
    full_name: str
    # Left as a plain string so unrecognised provider states reach reconciliation
    status: str = DirectoryUserStatus.ACTIVE.value

    job_title: str | None = None
    department: str | None = None
    org_unit_path: str | None = None
    manager_email: str | None = None
    phone: str | None = None
    start_date: date | None = None
    last_login_at: datetime | None = None

    raw_data: dict = Field(default_factory=dict)

    model_config = {"frozen": True}

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class DirectoryOrgUnit(BaseModel):
    """Organizational unit (department node) from a directory."""

    external_id: str
    name: str
    path: str
    parent_path: str | None = None
    description: str | None = None


class DirectoryPage(BaseModel):
    """One page of users plus the token for the next page."""

    items: list[DirectoryUser] = Field(default_factory=list)
    next_page_token: str | None = None


class DirectoryProvider(ABC):
    """Abstract contract for an external identity directory."""

    provider_name: str
    max_page_size: int = 500
    token_manager: TokenRefreshManager | None = None

    @abstractmethod
    async def test_connection(self) -> None:
        """
        Perform a minimal read to validate credentials.

        Raises:
            DirectoryError: If the directory rejects the call
        """

    @abstractmethod
    async def list_users(
        self,
        page_size: int = 500,
        page_token: str | None = None,
    ) -> DirectoryPage:
        """Fetch one page of users. Loop until ``next_page_token`` is None."""

    @abstractmethod
    async def get_user_by_email(self, email: str) -> DirectoryUser | None:
        pass

    @abstractmethod
    async def get_user_by_id(self, external_id: str) -> DirectoryUser | None:
        pass

    @abstractmethod
    async def list_org_units(self) -> list[DirectoryOrgUnit]:
        pass

    @abstractmethod
    async def get_org_unit(self, path: str) -> DirectoryOrgUnit | None:
        pass

    async def close(self) -> None:
        """Release any network resources held by the provider."""

    def clamp_page_size(self, page_size: int) -> int:
        return max(1, min(page_size, self.max_page_size))

    async def fetch_all_users(self, page_size: int = 500) -> list[DirectoryUser]:
        """Fetch every user by following page tokens to exhaustion."""
        users: list[DirectoryUser] = []
        page_token: str | None = None
        while True:
            page = await self.list_users(page_size=page_size, page_token=page_token)
            users.extend(page.items)
            page_token = page.next_page_token
            if not page_token:
                break
        return users
