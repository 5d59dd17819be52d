"""
Employee Reconciler

Matches directory users to stored employees and applies create/update/skip.

Matching priority:
1. (organization_id, external_id) - stable provider ID
2. (organization_id, email) - fallback, email can change

Directory status mapping:
- active -> active
- suspended -> suspended
- archived, deleted -> offboarded
- anything else -> active (never offboard on an unrecognised state)
"""

import asyncio
import logging
import weakref
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from backend.errors import PersistenceError
from backend.repositories.base import EmployeeRepository
from backend.schemas.employee import (
    Employee,
    EmployeeChanges,
    EmployeeStatus,
    ReconcileOutcome,
    SyncStats,
)
from integrations.base import DirectoryUser

logger = logging.getLogger(__name__)

DIRECTORY_STATUS_MAP = {
    "active": EmployeeStatus.ACTIVE,
    "suspended": EmployeeStatus.SUSPENDED,
    "archived": EmployeeStatus.OFFBOARDED,
    "deleted": EmployeeStatus.OFFBOARDED,
}


def map_directory_status(status: str | None) -> EmployeeStatus:
    """Map a directory status to an employee status, defaulting to active."""
    return DIRECTORY_STATUS_MAP.get((status or "").lower(), EmployeeStatus.ACTIVE)


class KeyedLocks:
    """One asyncio.Lock per key, released for collection once unused."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[tuple, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def get(self, key: tuple) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


class EmployeeReconciler:
    """
    Upserts directory users into the employee store.

    Users with different external IDs reconcile independently. The same
    external ID is serialized through a keyed lock shared by every batch
    handled by this reconciler.
    """

    def __init__(
        self,
        employees: EmployeeRepository,
        provider: str = "google_workspace",
        error_report_limit: int = 10,
        locks: KeyedLocks | None = None,
    ):
        self.employees = employees
        self.provider = provider
        self.error_report_limit = error_report_limit
        self._locks = locks or KeyedLocks()

    async def reconcile(self, organization_id: UUID, user: DirectoryUser) -> ReconcileOutcome:
        """Reconcile one directory user into the organization's employees."""
        async with self._locks.get((organization_id, user.external_id)):
            try:
                return await self._reconcile(organization_id, user)
            except PersistenceError as e:
                if not isinstance(e.__cause__, IntegrityError):
                    raise
                # Another worker created the same employee first; match against it
                logger.info(
                    f"Concurrent create for {user.external_id} in org {organization_id}, retrying match"
                )
                return await self._reconcile(organization_id, user)

    async def _reconcile(self, organization_id: UUID, user: DirectoryUser) -> ReconcileOutcome:
        existing = await self.employees.find_by_external_id_or_email(
            organization_id, user.external_id, user.email
        )
        status = map_directory_status(user.status)
        now = datetime.now(timezone.utc)

        if existing is None:
            await self.employees.create(
                Employee(
                    organization_id=organization_id,
                    external_id=user.external_id,
                    external_provider=self.provider,
                    email=user.email,
                    name=user.full_name,
                    title=user.job_title,
                    phone=user.phone,
                    department=user.department or user.org_unit_path,
                    manager_email=user.manager_email,
                    hired_at=user.start_date,
                    last_login_at=user.last_login_at,
                    status=status,
                    offboarded_at=now if status == EmployeeStatus.OFFBOARDED else None,
                )
            )
            logger.debug(f"Created employee {user.email} in org {organization_id}")
            return ReconcileOutcome.CREATED

        if not self._has_changes(existing, user, status):
            logger.debug(f"Skipped employee {user.email} (no changes)")
            return ReconcileOutcome.SKIPPED

        newly_offboarded = (
            status == EmployeeStatus.OFFBOARDED
            and existing.status != EmployeeStatus.OFFBOARDED
        )
        await self.employees.update(
            existing.id,
            EmployeeChanges(
                external_id=user.external_id,
                external_provider=self.provider,
                email=user.email,
                name=user.full_name,
                title=user.job_title,
                phone=user.phone,
                department=user.department or user.org_unit_path,
                manager_email=user.manager_email,
                hired_at=user.start_date,
                last_login_at=user.last_login_at,
                status=status,
                offboarded_at=now if newly_offboarded else None,
            ),
        )
        logger.debug(f"Updated employee {user.email} in org {organization_id}")
        return ReconcileOutcome.UPDATED

    @staticmethod
    def _has_changes(existing: Employee, user: DirectoryUser, status: EmployeeStatus) -> bool:
        return (
            existing.external_id != user.external_id
            or existing.email != user.email
            or existing.name != user.full_name
            or existing.status != status
        )

    async def reconcile_batch(
        self,
        organization_id: UUID,
        users: list[DirectoryUser],
        stats: SyncStats | None = None,
    ) -> SyncStats:
        """
        Reconcile a batch of users in order.

        A failing user is logged and counted; the rest of the batch
        still runs. At most ``error_report_limit`` messages are kept.
        Each user is recorded into ``stats`` as soon as it finishes, so a
        caller sharing one ``SyncStats`` keeps the counts of a cancelled batch.
        """
        stats = stats if stats is not None else SyncStats()
        for user in users:
            try:
                stats.record(await self.reconcile(organization_id, user))
            except Exception as e:
                message = f"employee:{user.email} - {e}"
                logger.error(
                    f"Failed to sync employee {user.email} "
                    f"(external_id={user.external_id}, org={organization_id}): {e}"
                )
                stats.record_error(message, limit=self.error_report_limit)
        return stats
