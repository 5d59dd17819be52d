"""Directory provider implementations."""

from integrations.base import DirectoryProvider
from integrations.directory.google_workspace import (
    GoogleWorkspaceDirectory,
    build_token_refresher,
)
from integrations.oauth_manager import (
    OAuthTokens,
    TokenRefreshManager,
    TokenSink,
    refresh_lock_for,
)


def create_directory_provider(
    provider: str,
    integration_key: str,
    tokens: OAuthTokens,
    config: dict,
    sink: TokenSink | None = None,
) -> DirectoryProvider:
    """
    Factory for directory clients.

    ``config`` carries the OAuth client credentials and retry settings.
    Token refresh for one integration is serialized by a shared lock keyed
    on ``integration_key``.
    """
    if provider != "google_workspace":
        raise ValueError(f"Unknown directory provider: {provider}")

    token_manager = TokenRefreshManager(
        tokens,
        refresher=build_token_refresher(
            config.get("client_id", ""),
            config.get("client_secret", ""),
        ),
        sink=sink,
        lock=refresh_lock_for(integration_key),
        buffer_minutes=config.get("token_refresh_buffer_minutes", 5),
    )
    client = GoogleWorkspaceDirectory(
        token_manager,
        customer_id=config.get("customer_id", "my_customer"),
        include_deleted=config.get("include_deleted", False),
        max_attempts=config.get("max_attempts", 5),
        retry_base_delay=config.get("retry_base_delay", 1.0),
        retry_max_jitter=config.get("retry_max_jitter", 1.0),
        timeout=config.get("timeout", 30.0),
        max_page_size=config.get("max_page_size", 500),
    )
    return client


__all__ = [
    "GoogleWorkspaceDirectory",
    "build_token_refresher",
    "create_directory_provider",
]
