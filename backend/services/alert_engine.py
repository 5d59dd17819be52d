"""
Alert Engine

Derives alerts from reconciled employees and subscription data and drives
alert lifecycle operations.

Every generator computes the alert key first and reuses an existing alert
with that key, so running a generator twice never creates duplicates.
A failure on one record is logged and the generator moves on.
"""

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import TypeVar
from uuid import UUID

from backend.errors import AlertNotFound
from backend.repositories.base import AlertRepository, SubscriptionRepository
from backend.schemas.alert import (
    Alert,
    AlertCounts,
    AlertSeverity,
    AlertType,
    CostAnomalyData,
    DuplicateToolData,
    DuplicateToolEntry,
    LowUtilizationData,
    OffboardingData,
    RenewalData,
    SeatShortageData,
    TrialEndingData,
    UnusedLicenseData,
    generate_alert_key,
)
from backend.schemas.subscription import (
    OffboardedLicenseHolder,
    SubscriptionSnapshot,
    UnusedAssignment,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Categories too broad to flag as duplicate tooling
_NON_DUPLICATE_CATEGORIES = {"other"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_money(amount: int, currency: str) -> str:
    return f"{currency} {amount / 100:,.2f}"


class AlertEngine:
    """Generates, deduplicates and transitions alerts for an organization."""

    def __init__(
        self,
        alerts: AlertRepository,
        subscriptions: SubscriptionRepository,
        renewal_alert_days: int = 30,
        trial_alert_days: int = 7,
        low_utilization_threshold_pct: int = 50,
        seat_shortage_threshold_pct: int = 90,
        unused_license_days: int = 30,
        cost_anomaly_threshold_pct: int = 20,
        alert_retention_days: int = 90,
        default_currency: str = "USD",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.alerts = alerts
        self.subscriptions = subscriptions
        self.renewal_alert_days = renewal_alert_days
        self.trial_alert_days = trial_alert_days
        self.low_utilization_threshold_pct = low_utilization_threshold_pct
        self.seat_shortage_threshold_pct = seat_shortage_threshold_pct
        self.unused_license_days = unused_license_days
        self.cost_anomaly_threshold_pct = cost_anomaly_threshold_pct
        self.alert_retention_days = alert_retention_days
        self.default_currency = default_currency
        self.clock = clock

    # ── Shared generation helpers ──

    async def _upsert(
        self,
        organization_id: UUID,
        alert_type: AlertType,
        build: Callable[[str], Alert],
        employee_id: UUID | None = None,
        subscription_id: UUID | None = None,
        category: str | None = None,
    ) -> Alert:
        """Return the alert stored under the computed key, creating it if absent."""
        key = generate_alert_key(
            alert_type,
            employee_id=employee_id,
            subscription_id=subscription_id,
            category=category,
        )
        existing = await self.alerts.find_by_alert_key(organization_id, key)
        if existing is not None:
            return existing
        return await self.alerts.save(build(key))

    async def _generate_each(
        self,
        organization_id: UUID,
        alert_type: AlertType,
        items: Iterable[T],
        identify: Callable[[T], str],
        make: Callable[[T], Awaitable[Alert]],
    ) -> list[Alert]:
        results: list[Alert] = []
        for item in items:
            try:
                results.append(await make(item))
            except Exception as e:
                logger.error(
                    f"Failed to create {alert_type.value} alert for {identify(item)} "
                    f"in org {organization_id}: {e}"
                )
        return results

    # ── Generators ──

    async def generate_offboarding_alerts(self, organization_id: UUID) -> list[Alert]:
        """
        Alert on offboarded employees who still hold active licenses.

        Severity is critical. Potential savings is the sum of the
        employee's active license prices.
        """
        holders = await self.subscriptions.list_offboarded_license_holders(organization_id)

        async def make(holder: OffboardedLicenseHolder) -> Alert:
            currency = (
                holder.licenses[0].currency if holder.licenses else self.default_currency
            )
            offboarded_on = (
                holder.offboarded_at.date().isoformat() if holder.offboarded_at else "an unknown date"
            )

            def build(key: str) -> Alert:
                return Alert.create(
                    organization_id=organization_id,
                    type=AlertType.OFFBOARDING,
                    severity=AlertSeverity.CRITICAL,
                    title=(
                        f"Offboarded employee {holder.name} has "
                        f"{len(holder.licenses)} active license(s)"
                    ),
                    description=(
                        f"{holder.name} ({holder.email}) was offboarded on {offboarded_on} "
                        f"but still has active licenses. Potential monthly savings: "
                        f"{format_money(holder.total_cost, currency)}"
                    ),
                    employee_id=holder.employee_id,
                    potential_savings=holder.total_cost,
                    currency=currency,
                    data=OffboardingData(
                        employee_name=holder.name,
                        employee_email=holder.email,
                        offboarded_at=holder.offboarded_at,
                        active_license_count=len(holder.licenses),
                        licenses=holder.licenses,
                    ),
                    alert_key=key,
                )

            return await self._upsert(
                organization_id, AlertType.OFFBOARDING, build, employee_id=holder.employee_id
            )

        return await self._generate_each(
            organization_id,
            AlertType.OFFBOARDING,
            holders,
            lambda h: f"employee {h.employee_id}",
            make,
        )

    async def generate_renewal_alerts(self, organization_id: UUID) -> list[Alert]:
        """Alert on subscriptions renewing within the renewal window."""
        today = self.clock().date()
        horizon = today + timedelta(days=self.renewal_alert_days)
        upcoming = [
            s for s in await self.subscriptions.list_active_subscriptions(organization_id)
            if s.renewal_date and today <= s.renewal_date <= horizon
        ]

        async def make(sub: SubscriptionSnapshot) -> Alert:
            days = (sub.renewal_date - today).days

            def build(key: str) -> Alert:
                return Alert.create(
                    organization_id=organization_id,
                    type=AlertType.RENEWAL_UPCOMING,
                    severity=AlertSeverity.CRITICAL if days <= 7 else AlertSeverity.WARNING,
                    title=f"{sub.name} renews in {days} day(s)",
                    description=(
                        f"{sub.name} renews on {sub.renewal_date.isoformat()}"
                        f"{' automatically' if sub.auto_renew else ''}. "
                        f"Current monthly cost: {format_money(sub.total_monthly_cost, sub.currency)}"
                    ),
                    subscription_id=sub.id,
                    currency=sub.currency,
                    data=RenewalData(
                        subscription_name=sub.name,
                        renewal_date=sub.renewal_date,
                        days_until_renewal=days,
                        auto_renew=sub.auto_renew,
                        monthly_cost=sub.total_monthly_cost,
                    ),
                    alert_key=key,
                )

            return await self._upsert(
                organization_id, AlertType.RENEWAL_UPCOMING, build, subscription_id=sub.id
            )

        return await self._generate_each(
            organization_id, AlertType.RENEWAL_UPCOMING, upcoming,
            lambda s: f"subscription {s.id}", make,
        )

    async def generate_trial_ending_alerts(self, organization_id: UUID) -> list[Alert]:
        today = self.clock().date()
        horizon = today + timedelta(days=self.trial_alert_days)
        ending = [
            s for s in await self.subscriptions.list_active_subscriptions(organization_id)
            if s.trial_end_date and today <= s.trial_end_date <= horizon
        ]

        async def make(sub: SubscriptionSnapshot) -> Alert:
            days = (sub.trial_end_date - today).days

            def build(key: str) -> Alert:
                return Alert.create(
                    organization_id=organization_id,
                    type=AlertType.TRIAL_ENDING,
                    severity=AlertSeverity.CRITICAL if days <= 2 else AlertSeverity.WARNING,
                    title=f"{sub.name} trial ends in {days} day(s)",
                    description=(
                        f"The {sub.name} trial ends on {sub.trial_end_date.isoformat()}. "
                        f"Decide whether to convert or cancel before billing starts."
                    ),
                    subscription_id=sub.id,
                    data=TrialEndingData(
                        subscription_name=sub.name,
                        trial_end_date=sub.trial_end_date,
                        days_remaining=days,
                    ),
                    alert_key=key,
                )

            return await self._upsert(
                organization_id, AlertType.TRIAL_ENDING, build, subscription_id=sub.id
            )

        return await self._generate_each(
            organization_id, AlertType.TRIAL_ENDING, ending,
            lambda s: f"subscription {s.id}", make,
        )

    async def generate_low_utilization_alerts(self, organization_id: UUID) -> list[Alert]:
        """Alert on seat-based subscriptions used below the utilization threshold."""
        underused = [
            s for s in await self.subscriptions.list_active_subscriptions(organization_id)
            if s.utilization_pct is not None
            and s.utilization_pct < self.low_utilization_threshold_pct
        ]

        async def make(sub: SubscriptionSnapshot) -> Alert:
            savings = sub.unused_seats * (sub.price_per_unit or 0)

            def build(key: str) -> Alert:
                return Alert.create(
                    organization_id=organization_id,
                    type=AlertType.LOW_UTILIZATION,
                    severity=AlertSeverity.WARNING,
                    title=f"{sub.name} is only {sub.utilization_pct:.0f}% utilized",
                    description=(
                        f"{sub.used_seats} of {sub.total_seats} seats in use. Removing "
                        f"{sub.unused_seats} unused seat(s) saves "
                        f"{format_money(savings, sub.currency)} per month"
                    ),
                    subscription_id=sub.id,
                    potential_savings=savings or None,
                    currency=sub.currency,
                    data=LowUtilizationData(
                        subscription_name=sub.name,
                        total_seats=sub.total_seats,
                        used_seats=sub.used_seats,
                        unused_seats=sub.unused_seats,
                        utilization_pct=sub.utilization_pct,
                    ),
                    alert_key=key,
                )

            return await self._upsert(
                organization_id, AlertType.LOW_UTILIZATION, build, subscription_id=sub.id
            )

        return await self._generate_each(
            organization_id, AlertType.LOW_UTILIZATION, underused,
            lambda s: f"subscription {s.id}", make,
        )

    async def generate_seat_shortage_alerts(self, organization_id: UUID) -> list[Alert]:
        crowded = [
            s for s in await self.subscriptions.list_active_subscriptions(organization_id)
            if s.utilization_pct is not None
            and s.utilization_pct >= self.seat_shortage_threshold_pct
        ]

        async def make(sub: SubscriptionSnapshot) -> Alert:
            full = sub.used_seats >= sub.total_seats

            def build(key: str) -> Alert:
                return Alert.create(
                    organization_id=organization_id,
                    type=AlertType.SEAT_SHORTAGE,
                    severity=AlertSeverity.CRITICAL if full else AlertSeverity.WARNING,
                    title=f"{sub.name} is running out of seats",
                    description=(
                        f"{sub.used_seats} of {sub.total_seats} seats in use "
                        f"({sub.utilization_pct:.0f}%)"
                    ),
                    subscription_id=sub.id,
                    data=SeatShortageData(
                        subscription_name=sub.name,
                        total_seats=sub.total_seats,
                        used_seats=sub.used_seats,
                        utilization_pct=sub.utilization_pct,
                    ),
                    alert_key=key,
                )

            return await self._upsert(
                organization_id, AlertType.SEAT_SHORTAGE, build, subscription_id=sub.id
            )

        return await self._generate_each(
            organization_id, AlertType.SEAT_SHORTAGE, crowded,
            lambda s: f"subscription {s.id}", make,
        )

    async def generate_unused_license_alerts(self, organization_id: UUID) -> list[Alert]:
        """Alert on active assignments with no use within ``unused_license_days``."""
        now = self.clock()
        assignments = await self.subscriptions.list_unused_assignments(
            organization_id, now - timedelta(days=self.unused_license_days)
        )

        async def make(a: UnusedAssignment) -> Alert:
            reference = a.last_used_at or a.assigned_at
            days_unused = (now - reference).days if reference else self.unused_license_days

            def build(key: str) -> Alert:
                return Alert.create(
                    organization_id=organization_id,
                    type=AlertType.UNUSED_LICENSE,
                    severity=AlertSeverity.INFO,
                    title=f"{a.employee_name} has not used {a.subscription_name} in {days_unused} days",
                    description=(
                        f"Reclaiming this license saves "
                        f"{format_money(a.price_per_unit, a.currency)} per month"
                    ),
                    employee_id=a.employee_id,
                    subscription_id=a.subscription_id,
                    potential_savings=a.price_per_unit or None,
                    currency=a.currency,
                    data=UnusedLicenseData(
                        subscription_name=a.subscription_name,
                        employee_name=a.employee_name,
                        employee_email=a.employee_email,
                        last_used_at=a.last_used_at,
                        days_unused=days_unused,
                    ),
                    alert_key=key,
                )

            return await self._upsert(
                organization_id,
                AlertType.UNUSED_LICENSE,
                build,
                employee_id=a.employee_id,
                subscription_id=a.subscription_id,
            )

        return await self._generate_each(
            organization_id, AlertType.UNUSED_LICENSE, assignments,
            lambda a: f"employee {a.employee_id} on subscription {a.subscription_id}", make,
        )

    async def generate_duplicate_tool_alerts(self, organization_id: UUID) -> list[Alert]:
        """
        Alert on categories with more than one active subscription.

        Potential savings assumes keeping only the most expensive tool.
        """
        by_category: dict[str, list[SubscriptionSnapshot]] = defaultdict(list)
        for sub in await self.subscriptions.list_active_subscriptions(organization_id):
            if sub.category not in _NON_DUPLICATE_CATEGORIES:
                by_category[sub.category].append(sub)
        groups = [(c, subs) for c, subs in sorted(by_category.items()) if len(subs) > 1]

        async def make(group: tuple[str, list[SubscriptionSnapshot]]) -> Alert:
            category, subs = group
            costs = [s.total_monthly_cost for s in subs]
            savings = sum(costs) - max(costs)
            currency = subs[0].currency
            names = ", ".join(s.name for s in subs)

            def build(key: str) -> Alert:
                return Alert.create(
                    organization_id=organization_id,
                    type=AlertType.DUPLICATE_TOOL,
                    severity=AlertSeverity.INFO,
                    title=f"{len(subs)} overlapping {category} tools",
                    description=f"Consider consolidating {names}",
                    potential_savings=savings or None,
                    currency=currency,
                    data=DuplicateToolData(
                        category=category,
                        subscriptions=[
                            DuplicateToolEntry(
                                subscription_id=s.id,
                                name=s.name,
                                monthly_cost=s.total_monthly_cost,
                            )
                            for s in subs
                        ],
                    ),
                    alert_key=key,
                )

            return await self._upsert(
                organization_id, AlertType.DUPLICATE_TOOL, build, category=category
            )

        return await self._generate_each(
            organization_id, AlertType.DUPLICATE_TOOL, groups,
            lambda g: f"category {g[0]}", make,
        )

    async def generate_cost_anomaly_alerts(self, organization_id: UUID) -> list[Alert]:
        """Alert when monthly cost rose by more than the anomaly threshold."""
        factor = 1 + self.cost_anomaly_threshold_pct / 100
        spiking = [
            s for s in await self.subscriptions.list_active_subscriptions(organization_id)
            if s.previous_monthly_cost
            and s.total_monthly_cost > s.previous_monthly_cost * factor
        ]

        async def make(sub: SubscriptionSnapshot) -> Alert:
            increase = sub.total_monthly_cost - sub.previous_monthly_cost
            increase_pct = round(increase / sub.previous_monthly_cost * 100, 1)

            def build(key: str) -> Alert:
                return Alert.create(
                    organization_id=organization_id,
                    type=AlertType.COST_ANOMALY,
                    severity=AlertSeverity.WARNING,
                    title=f"{sub.name} cost increased {increase_pct:.0f}%",
                    description=(
                        f"Monthly cost went from "
                        f"{format_money(sub.previous_monthly_cost, sub.currency)} to "
                        f"{format_money(sub.total_monthly_cost, sub.currency)}"
                    ),
                    subscription_id=sub.id,
                    potential_savings=increase,
                    currency=sub.currency,
                    data=CostAnomalyData(
                        subscription_name=sub.name,
                        previous_monthly_cost=sub.previous_monthly_cost,
                        current_monthly_cost=sub.total_monthly_cost,
                        increase_pct=increase_pct,
                    ),
                    alert_key=key,
                )

            return await self._upsert(
                organization_id, AlertType.COST_ANOMALY, build, subscription_id=sub.id
            )

        return await self._generate_each(
            organization_id, AlertType.COST_ANOMALY, spiking,
            lambda s: f"subscription {s.id}", make,
        )

    async def generate_all(self, organization_id: UUID) -> dict[str, int]:
        """Run every generator; one failing generator does not stop the others."""
        generators = {
            AlertType.OFFBOARDING: self.generate_offboarding_alerts,
            AlertType.RENEWAL_UPCOMING: self.generate_renewal_alerts,
            AlertType.TRIAL_ENDING: self.generate_trial_ending_alerts,
            AlertType.LOW_UTILIZATION: self.generate_low_utilization_alerts,
            AlertType.SEAT_SHORTAGE: self.generate_seat_shortage_alerts,
            AlertType.UNUSED_LICENSE: self.generate_unused_license_alerts,
            AlertType.DUPLICATE_TOOL: self.generate_duplicate_tool_alerts,
            AlertType.COST_ANOMALY: self.generate_cost_anomaly_alerts,
        }
        counts: dict[str, int] = {}
        for alert_type, generate in generators.items():
            try:
                counts[alert_type.value] = len(await generate(organization_id))
            except Exception as e:
                logger.error(
                    f"{alert_type.value} alert generation failed for org {organization_id}: {e}"
                )
                counts[alert_type.value] = 0
        logger.info(f"Alert generation for org {organization_id}: {counts}")
        return counts

    # ── Lifecycle ──

    async def create(
        self,
        organization_id: UUID,
        type: AlertType,
        severity: AlertSeverity,
        title: str,
        **fields,
    ) -> Alert:
        """Create a custom alert."""
        alert = Alert.create(
            organization_id=organization_id,
            type=type,
            severity=severity,
            title=title,
            **fields,
        )
        return await self.alerts.save(alert)

    async def get(self, alert_id: UUID) -> Alert:
        alert = await self.alerts.find_by_id(alert_id)
        if alert is None:
            raise AlertNotFound(alert_id)
        return alert

    async def acknowledge(self, alert_id: UUID, by: str) -> Alert:
        alert = await self.get(alert_id)
        alert.acknowledge(by)
        return await self.alerts.save(alert)

    async def resolve(self, alert_id: UUID, by: str, notes: str | None = None) -> Alert:
        alert = await self.get(alert_id)
        alert.resolve(by, notes)
        return await self.alerts.save(alert)

    async def dismiss(self, alert_id: UUID, by: str, reason: str | None = None) -> Alert:
        alert = await self.get(alert_id)
        alert.dismiss(by, reason)
        return await self.alerts.save(alert)

    async def snooze(self, alert_id: UUID, by: str, until: datetime) -> Alert:
        alert = await self.get(alert_id)
        alert.snooze(by, until, now=self.clock())
        return await self.alerts.save(alert)

    async def unsnooze(self, alert_id: UUID) -> Alert:
        alert = await self.get(alert_id)
        alert.unsnooze()
        return await self.alerts.save(alert)

    # ── Reporting and retention ──

    async def count_by_status(self, organization_id: UUID) -> AlertCounts:
        return await self.alerts.count_by_status(organization_id)

    async def calculate_potential_savings(self, organization_id: UUID) -> int:
        """Total savings of pending and acknowledged alerts, in minor units."""
        return await self.alerts.calculate_potential_savings(organization_id)

    async def delete_old_alerts(
        self,
        organization_id: UUID,
        days_old: int | None = None,
    ) -> int:
        days_old = self.alert_retention_days if days_old is None else days_old
        deleted = await self.alerts.delete_old_alerts(organization_id, days_old)
        if deleted:
            logger.info(
                f"Deleted {deleted} resolved/dismissed alert(s) older than "
                f"{days_old} days for org {organization_id}"
            )
        return deleted
