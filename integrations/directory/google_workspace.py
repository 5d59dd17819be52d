"""
Google Workspace Directory Integration

Reads users and organizational units from the Google Admin SDK Directory API.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import httpx

from integrations.base import (
    DirectoryOrgUnit,
    DirectoryPage,
    DirectoryProvider,
    DirectoryUser,
    DirectoryUserStatus,
)
from integrations.errors import (
    AuthError,
    DirectoryError,
    NotFound,
    TransientServerError,
    classify_status,
)
from integrations.oauth_manager import OAuthTokens, TokenRefresher, TokenRefreshManager
from integrations.retry import retry_with_backoff

logger = logging.getLogger(__name__)

GOOGLE_DIRECTORY_API_BASE = "https://admin.googleapis.com/admin/directory/v1"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Google reports users who never signed in with the epoch
NEVER_LOGGED_IN = "1970-01-01T00:00:00.000Z"


class GoogleWorkspaceDirectory(DirectoryProvider):
    """Google Workspace directory via the Admin SDK."""

    provider_name = "google_workspace"
    base_url = GOOGLE_DIRECTORY_API_BASE

    def __init__(
        self,
        token_manager: TokenRefreshManager,
        customer_id: str = "my_customer",
        include_deleted: bool = False,
        max_attempts: int = 5,
        retry_base_delay: float = 1.0,
        retry_max_jitter: float = 1.0,
        timeout: float = 30.0,
        max_page_size: int = 500,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.token_manager = token_manager
        self.customer_id = customer_id
        self.include_deleted = include_deleted
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_jitter = retry_max_jitter
        self.timeout = timeout
        self.max_page_size = max_page_size
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _send(self, path: str, params: dict | None, access_token: str) -> dict:
        try:
            response = await self.client.get(
                path,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TransportError as e:
            raise TransientServerError(f"Google Directory request failed: {e}") from e

        if response.is_success:
            return response.json()
        raise classify_status(response.status_code, _error_message(response))

    async def _get(self, path: str, params: dict | None = None) -> dict:
        async def attempt() -> dict:
            return await self.token_manager.call(
                lambda token: self._send(path, params, token)
            )

        return await retry_with_backoff(
            attempt,
            max_attempts=self.max_attempts,
            base_delay=self.retry_base_delay,
            max_jitter=self.retry_max_jitter,
            sleep=self._sleep,
            operation=f"GET {path}",
        )

    async def test_connection(self) -> None:
        try:
            await self._get("/users", {"customer": self.customer_id, "maxResults": 1})
        except DirectoryError as e:
            logger.error(f"Google Workspace connection test failed: {e}")
            raise

    async def list_users(
        self,
        page_size: int = 500,
        page_token: str | None = None,
    ) -> DirectoryPage:
        params: dict = {
            "customer": self.customer_id,
            "maxResults": self.clamp_page_size(page_size),
            "projection": "full",
            "orderBy": "email",
        }
        if page_token:
            params["pageToken"] = page_token
        if self.include_deleted:
            params["showDeleted"] = "true"

        data = await self._get("/users", params)
        return DirectoryPage(
            items=[map_google_user(u) for u in data.get("users", [])],
            next_page_token=data.get("nextPageToken") or None,
        )

    async def _get_user(self, user_key: str) -> DirectoryUser | None:
        try:
            data = await self._get(f"/users/{user_key}", {"projection": "full"})
        except NotFound:
            return None
        return map_google_user(data)

    async def get_user_by_email(self, email: str) -> DirectoryUser | None:
        return await self._get_user(email.strip().lower())

    async def get_user_by_id(self, external_id: str) -> DirectoryUser | None:
        return await self._get_user(external_id)

    async def list_org_units(self) -> list[DirectoryOrgUnit]:
        data = await self._get(
            f"/customer/{self.customer_id}/orgunits",
            {"type": "all"},
        )
        return [map_google_org_unit(o) for o in data.get("organizationUnits", [])]

    async def get_org_unit(self, path: str) -> DirectoryOrgUnit | None:
        try:
            data = await self._get(
                f"/customer/{self.customer_id}/orgunits/{path.lstrip('/')}"
            )
        except NotFound:
            return None
        return map_google_org_unit(data)


def build_token_refresher(
    client_id: str,
    client_secret: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TokenRefresher:
    """Return a coroutine that exchanges a refresh token for new Google tokens."""

    async def refresh(refresh_token: str) -> OAuthTokens:
        async with httpx.AsyncClient(transport=transport, timeout=30.0) as http:
            response = await http.post(
                GOOGLE_TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": client_id,
                    "client_secret": client_secret,
                },
            )
        if response.status_code in (400, 401):
            # invalid_grant: the refresh token was revoked or expired
            raise AuthError(_error_message(response), response.status_code)
        if not response.is_success:
            raise classify_status(response.status_code, _error_message(response))

        data = response.json()
        expires_in = data.get("expires_in", 3600)
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )

    return refresh


def map_google_user(data: dict) -> DirectoryUser:
    """Map an Admin SDK user resource to a DirectoryUser."""
    email = data.get("primaryEmail", "")
    name = data.get("name") or {}

    primary_org = _primary(data.get("organizations"))
    primary_phone = _primary(data.get("phones"))
    manager = next(
        (
            r for r in data.get("relations") or []
            if r.get("type") == "manager" or r.get("customType") == "manager"
        ),
        None,
    )

    created = _parse_datetime(data.get("creationTime"))
    last_login = data.get("lastLoginTime")

    return DirectoryUser(
        external_id=data["id"],
        email=email,
        full_name=name.get("fullName") or email,
        status=_map_user_status(data).value,
        job_title=primary_org.get("title") if primary_org else None,
        department=primary_org.get("department") if primary_org else None,
        org_unit_path=data.get("orgUnitPath"),
        manager_email=manager.get("value") if manager else None,
        phone=primary_phone.get("value") if primary_phone else None,
        start_date=created.date() if created else None,
        last_login_at=None if last_login == NEVER_LOGGED_IN else _parse_datetime(last_login),
        raw_data={
            "org_unit_path": data.get("orgUnitPath"),
            "suspension_reason": data.get("suspensionReason"),
            "thumbnail_photo_url": data.get("thumbnailPhotoUrl"),
        },
    )


def map_google_org_unit(data: dict) -> DirectoryOrgUnit:
    """Map an Admin SDK org unit; a parent path of "/" means a root unit."""
    parent = data.get("parentOrgUnitPath")
    return DirectoryOrgUnit(
        external_id=data.get("orgUnitId") or data["orgUnitPath"],
        name=data.get("name", ""),
        path=data["orgUnitPath"],
        parent_path=parent if parent and parent != "/" else None,
        description=data.get("description"),
    )


def _map_user_status(data: dict) -> DirectoryUserStatus:
    if data.get("deletionTime"):
        return DirectoryUserStatus.DELETED
    if data.get("archived"):
        return DirectoryUserStatus.ARCHIVED
    if data.get("suspended"):
        return DirectoryUserStatus.SUSPENDED
    return DirectoryUserStatus.ACTIVE


def _primary(entries: list[dict] | None) -> dict | None:
    if not entries:
        return None
    return next((e for e in entries if e.get("primary")), None)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable Google timestamp: {value}")
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if not isinstance(body, dict):
        return str(body)
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or str(error)
    return body.get("error_description") or str(error or body)
