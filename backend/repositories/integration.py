"""
Integration Repository

SQLAlchemy storage for directory integrations with tokens encrypted at rest.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.errors import IntegrationNotFound
from backend.models.integration import Integration as IntegrationRow
from backend.repositories.base import SqlRepository
from backend.schemas.integration import Integration, IntegrationStatus, SyncStatus
from integrations.oauth_manager import OAuthTokens, TokenEncryption


class SqlIntegrationRepository(SqlRepository):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryption: TokenEncryption,
    ):
        super().__init__(session_factory)
        self.encryption = encryption

    def to_domain(self, row: IntegrationRow) -> Integration:
        credentials = None
        if row.access_token_encrypted:
            credentials = self.encryption.decrypt_tokens(
                row.access_token_encrypted,
                row.refresh_token_encrypted,
                row.token_expires_at,
            )
        return Integration(
            id=row.id,
            organization_id=row.organization_id,
            provider=row.provider,
            status=IntegrationStatus(row.status),
            credentials=credentials,
            config=row.config or {},
            last_sync_at=row.last_sync_at,
            last_sync_status=SyncStatus(row.last_sync_status) if row.last_sync_status else None,
            last_sync_message=row.last_sync_message,
            sync_stats=row.sync_stats or {},
            last_error=row.last_error,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _apply_tokens(self, row: IntegrationRow, tokens: OAuthTokens | None) -> None:
        if tokens is None:
            row.access_token_encrypted = None
            row.refresh_token_encrypted = None
            row.token_expires_at = None
            return
        row.access_token_encrypted, row.refresh_token_encrypted = (
            self.encryption.encrypt_tokens(tokens)
        )
        row.token_expires_at = tokens.expires_at

    async def find_by_id(self, integration_id: UUID) -> Integration | None:
        async with self._session() as session:
            row = await session.get(IntegrationRow, integration_id)
            return self.to_domain(row) if row else None

    async def find_active_by_provider(self, provider: str) -> list[Integration]:
        async with self._session() as session:
            result = await session.execute(
                select(IntegrationRow)
                .where(
                    IntegrationRow.provider == provider,
                    IntegrationRow.status == IntegrationStatus.ACTIVE.value,
                )
                .order_by(IntegrationRow.created_at)
            )
            return [self.to_domain(row) for row in result.scalars().all()]

    async def list_active_organization_ids(self) -> list[UUID]:
        async with self._session() as session:
            result = await session.execute(
                select(IntegrationRow.organization_id)
                .where(IntegrationRow.status == IntegrationStatus.ACTIVE.value)
                .distinct()
            )
            return list(result.scalars().all())

    async def save(self, integration: Integration) -> Integration:
        async with self._session() as session:
            row = await session.get(IntegrationRow, integration.id)
            if row is None:
                row = IntegrationRow(
                    id=integration.id,
                    organization_id=integration.organization_id,
                    provider=integration.provider,
                )
                session.add(row)
            row.status = integration.status.value
            row.config = integration.config
            row.last_error = integration.last_error
            row.last_sync_at = integration.last_sync_at
            row.last_sync_status = (
                integration.last_sync_status.value if integration.last_sync_status else None
            )
            row.last_sync_message = integration.last_sync_message
            row.sync_stats = integration.sync_stats
            self._apply_tokens(row, integration.credentials)
            await session.flush()
            await session.refresh(row)
            return self.to_domain(row)

    async def update_tokens(self, integration_id: UUID, tokens: OAuthTokens) -> None:
        async with self._session() as session:
            row = await session.get(IntegrationRow, integration_id, with_for_update=True)
            if row is None:
                raise IntegrationNotFound(integration_id)
            self._apply_tokens(row, tokens)

    async def record_batch_progress(
        self,
        integration_id: UUID,
        batch_stats: dict,
        total_batches: int,
        total_users: int,
    ) -> None:
        """Apply one batch's progress under a row lock so parallel batches don't lose updates."""
        async with self._session() as session:
            row = await session.get(IntegrationRow, integration_id, with_for_update=True)
            if row is None:
                raise IntegrationNotFound(integration_id)
            integration = self.to_domain(row)
            integration.record_batch_progress(batch_stats, total_batches, total_users)
            row.sync_stats = integration.sync_stats
            row.last_sync_message = integration.last_sync_message
            if integration.last_sync_status:
                row.last_sync_status = integration.last_sync_status.value
