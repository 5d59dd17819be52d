"""
OAuth Token Manager

Manages OAuth token lifecycle: encryption at rest, refresh on expiry or
rejection, and handing refreshed tokens to a persistence sink.
"""

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol, TypeVar

from cryptography.fernet import Fernet
from pydantic import BaseModel

from integrations.errors import AuthError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OAuthTokens(BaseModel):
    """An access/refresh token pair with its expiry."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


class TokenSink(Protocol):
    """Receives refreshed tokens so the caller can persist them."""

    async def on_tokens_refreshed(self, tokens: OAuthTokens) -> None: ...


TokenRefresher = Callable[[str], Awaitable[OAuthTokens]]


class TokenEncryption:
    """Handles encryption/decryption of OAuth tokens."""

    def __init__(self, encryption_key: str | bytes):
        if isinstance(encryption_key, str):
            encryption_key = encryption_key.encode()
        self.cipher = Fernet(encryption_key)

    def encrypt(self, token: str) -> bytes:
        """Encrypt a token string."""
        return self.cipher.encrypt(token.encode())

    def decrypt(self, encrypted_token: bytes) -> str:
        """Decrypt an encrypted token."""
        return self.cipher.decrypt(encrypted_token).decode()

    def encrypt_tokens(self, tokens: OAuthTokens) -> tuple[bytes, bytes | None]:
        """
        Encrypt tokens for storage.

        Returns:
            Tuple of (encrypted_access, encrypted_refresh)
        """
        encrypted_refresh = None
        if tokens.refresh_token:
            encrypted_refresh = self.encrypt(tokens.refresh_token)
        return self.encrypt(tokens.access_token), encrypted_refresh

    def decrypt_tokens(
        self,
        encrypted_access: bytes,
        encrypted_refresh: bytes | None = None,
        expires_at: datetime | None = None,
    ) -> OAuthTokens:
        """Decrypt stored tokens."""
        refresh_token = None
        if encrypted_refresh:
            refresh_token = self.decrypt(encrypted_refresh)
        return OAuthTokens(
            access_token=self.decrypt(encrypted_access),
            refresh_token=refresh_token,
            expires_at=expires_at,
        )


_refresh_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def refresh_lock_for(key: str) -> asyncio.Lock:
    """Shared lock for all token managers of one integration."""
    lock = _refresh_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _refresh_locks[key] = lock
    return lock


class TokenRefreshManager:
    """
    Holds the current tokens for one integration and refreshes them.

    Every provider call goes through ``call``. A call rejected with
    ``AuthError`` triggers exactly one refresh followed by one retry.
    Refreshes are serialized through ``lock``; a waiter that finds the
    token already rotated reuses it instead of refreshing again.
    """

    def __init__(
        self,
        tokens: OAuthTokens,
        refresher: TokenRefresher,
        sink: TokenSink | None = None,
        lock: asyncio.Lock | None = None,
        buffer_minutes: int = 5,
    ):
        self._tokens = tokens
        self._refresher = refresher
        self._sink = sink
        self._lock = lock or asyncio.Lock()
        self._buffer = timedelta(minutes=buffer_minutes)
        self.last_persistence_error: Exception | None = None

    @property
    def tokens(self) -> OAuthTokens:
        return self._tokens

    @property
    def access_token(self) -> str:
        return self._tokens.access_token

    def needs_refresh(self, now: datetime | None = None) -> bool:
        """Check if token needs refresh (within buffer period)."""
        if not self._tokens.expires_at:
            return False
        now = now or datetime.now(timezone.utc)
        return now + self._buffer >= self._tokens.expires_at

    async def refresh(self, stale_access_token: str | None = None) -> OAuthTokens:
        """Refresh the tokens unless another caller already replaced ``stale_access_token``."""
        async with self._lock:
            if (
                stale_access_token is not None
                and self._tokens.access_token != stale_access_token
            ):
                return self._tokens

            refresh_token = self._tokens.refresh_token
            if not refresh_token:
                raise AuthError("Access token rejected and no refresh token available")

            logger.info("Refreshing OAuth token...")
            new_tokens = await self._refresher(refresh_token)
            if not new_tokens.refresh_token:
                new_tokens = new_tokens.model_copy(update={"refresh_token": refresh_token})
            self._tokens = new_tokens
            await self._notify_sink(new_tokens)
            return new_tokens

    async def _notify_sink(self, tokens: OAuthTokens) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.on_tokens_refreshed(tokens)
            self.last_persistence_error = None
        except Exception as e:
            # Tokens stay usable in memory; the caller reports the failure
            self.last_persistence_error = e
            logger.error(f"Failed to persist refreshed OAuth tokens: {e}")

    async def call(self, fn: Callable[[str], Awaitable[T]]) -> T:
        """Invoke ``fn(access_token)`` with refresh-on-expiry and one auth retry."""
        if self._tokens.refresh_token and self.needs_refresh():
            await self.refresh(stale_access_token=self._tokens.access_token)

        access_token = self._tokens.access_token
        try:
            return await fn(access_token)
        except AuthError:
            if not self._tokens.refresh_token:
                raise
            logger.warning("Directory rejected access token, refreshing once")
            await self.refresh(stale_access_token=access_token)
            return await fn(self._tokens.access_token)

