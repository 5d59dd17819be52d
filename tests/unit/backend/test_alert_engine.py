"""
Alert Engine Unit Tests

Tests for each generator's thresholds and savings, idempotent re-runs,
per-record failure isolation and lifecycle operations by id.
"""

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from backend.errors import AlertNotFound, InvalidTransition
from backend.schemas.alert import AlertSeverity, AlertStatus, AlertType, LicenseRef
from backend.schemas.subscription import OffboardedLicenseHolder, UnusedAssignment
from backend.services.alert_engine import AlertEngine
from tests.factories import make_alert, make_subscription
from tests.fakes import InMemoryAlertRepository, InMemorySubscriptionRepository

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _engine(alerts=None, subscriptions=None, **kwargs) -> AlertEngine:
    return AlertEngine(
        alerts if alerts is not None else InMemoryAlertRepository(),
        subscriptions if subscriptions is not None else InMemorySubscriptionRepository(),
        clock=lambda: NOW,
        **kwargs,
    )


def _holder(name: str = "Ex Employee", prices=(1500, 2500)) -> OffboardedLicenseHolder:
    return OffboardedLicenseHolder(
        employee_id=uuid4(),
        name=name,
        email=f"{name.lower().replace(' ', '.')}@x.com",
        offboarded_at=NOW - timedelta(days=3),
        licenses=[
            LicenseRef(subscription_id=uuid4(), name=f"Tool {i}", price_per_unit=price)
            for i, price in enumerate(prices)
        ],
    )


class _FlakyAlertRepository(InMemoryAlertRepository):
    """Fails to save alerts whose title contains ``poison``."""

    def __init__(self, poison: str):
        super().__init__()
        self.poison = poison

    async def save(self, alert):
        if self.poison in alert.title:
            raise RuntimeError("database write failed")
        return await super().save(alert)


# ---------------------------------------------------------------------------
# Offboarding
# ---------------------------------------------------------------------------

class TestOffboardingAlerts:
    """Tests for AlertEngine.generate_offboarding_alerts."""

    @pytest.mark.asyncio
    async def test_creates_critical_alert_with_license_savings(self, org_id, alert_repo):
        holder = _holder("Sam Gone", prices=(1500, 2500))
        engine = _engine(alert_repo, InMemorySubscriptionRepository(holders=[holder]))

        [alert] = await engine.generate_offboarding_alerts(org_id)

        assert alert.type == AlertType.OFFBOARDING
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.status == AlertStatus.PENDING
        assert alert.employee_id == holder.employee_id
        assert alert.potential_savings == 4000
        assert alert.alert_key == f"offboarding:{holder.employee_id}"
        assert alert.title == "Offboarded employee Sam Gone has 2 active license(s)"
        assert "USD 40.00" in alert.description
        assert alert.data.active_license_count == 2
        assert [lic.name for lic in alert.data.licenses] == ["Tool 0", "Tool 1"]

    @pytest.mark.asyncio
    async def test_running_twice_creates_one_alert(self, org_id, alert_repo):
        engine = _engine(alert_repo, InMemorySubscriptionRepository(holders=[_holder()]))

        first = await engine.generate_offboarding_alerts(org_id)
        second = await engine.generate_offboarding_alerts(org_id)

        assert len(alert_repo.of_org(org_id)) == 1
        assert first[0].id == second[0].id

    @pytest.mark.asyncio
    async def test_existing_alert_not_escalated_or_reopened(self, org_id, alert_repo):
        holder = _holder()
        engine = _engine(alert_repo, InMemorySubscriptionRepository(holders=[holder]))
        [alert] = await engine.generate_offboarding_alerts(org_id)
        await engine.resolve(alert.id, "it@x.com", "Licenses removed")

        [again] = await engine.generate_offboarding_alerts(org_id)

        assert again.id == alert.id
        assert again.status == AlertStatus.RESOLVED
        assert len(alert_repo.of_org(org_id)) == 1

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_others(self, org_id):
        repo = _FlakyAlertRepository(poison="Broken")
        holders = [_holder("Alice One"), _holder("Broken Record"), _holder("Carol Three")]
        engine = _engine(repo, InMemorySubscriptionRepository(holders=holders))

        alerts = await engine.generate_offboarding_alerts(org_id)

        assert {a.data.employee_name for a in alerts} == {"Alice One", "Carol Three"}
        assert len(repo.of_org(org_id)) == 2

    @pytest.mark.asyncio
    async def test_no_holders_no_alerts(self, org_id, alert_repo):
        assert await _engine(alert_repo).generate_offboarding_alerts(org_id) == []


# ---------------------------------------------------------------------------
# Subscription-based generators
# ---------------------------------------------------------------------------

class TestRenewalAlerts:
    @pytest.mark.asyncio
    async def test_severity_by_days_until_renewal(self, org_id, alert_repo):
        soon = make_subscription(org_id, name="Soon", renewal_date=TODAY + timedelta(days=5))
        later = make_subscription(org_id, name="Later", renewal_date=TODAY + timedelta(days=20))
        far = make_subscription(org_id, name="Far", renewal_date=TODAY + timedelta(days=60))
        past = make_subscription(org_id, name="Past", renewal_date=TODAY - timedelta(days=1))
        engine = _engine(
            alert_repo, InMemorySubscriptionRepository(subscriptions=[soon, later, far, past])
        )

        alerts = {a.data.subscription_name: a for a in await engine.generate_renewal_alerts(org_id)}

        assert set(alerts) == {"Soon", "Later"}
        assert alerts["Soon"].severity == AlertSeverity.CRITICAL
        assert alerts["Soon"].data.days_until_renewal == 5
        assert alerts["Later"].severity == AlertSeverity.WARNING
        assert alerts["Later"].alert_key == f"renewal:{later.id}"

    @pytest.mark.asyncio
    async def test_cancelled_subscriptions_ignored(self, org_id, alert_repo):
        sub = make_subscription(
            org_id, status="cancelled", renewal_date=TODAY + timedelta(days=3)
        )
        engine = _engine(alert_repo, InMemorySubscriptionRepository(subscriptions=[sub]))

        assert await engine.generate_renewal_alerts(org_id) == []


class TestTrialEndingAlerts:
    @pytest.mark.asyncio
    async def test_trial_inside_window(self, org_id, alert_repo):
        ending = make_subscription(
            org_id, name="Figma", status="trial", trial_end_date=TODAY + timedelta(days=2)
        )
        later = make_subscription(
            org_id, name="Miro", status="trial", trial_end_date=TODAY + timedelta(days=6)
        )
        outside = make_subscription(
            org_id, name="Canva", status="trial", trial_end_date=TODAY + timedelta(days=10)
        )
        engine = _engine(
            alert_repo, InMemorySubscriptionRepository(subscriptions=[ending, later, outside])
        )

        alerts = {a.data.subscription_name: a for a in await engine.generate_trial_ending_alerts(org_id)}

        assert set(alerts) == {"Figma", "Miro"}
        assert alerts["Figma"].severity == AlertSeverity.CRITICAL
        assert alerts["Miro"].severity == AlertSeverity.WARNING
        assert alerts["Figma"].alert_key == f"trial_ending:{ending.id}"


class TestUtilizationAlerts:
    @pytest.mark.asyncio
    async def test_low_utilization_savings_from_unused_seats(self, org_id, alert_repo):
        sub = make_subscription(org_id, total_seats=20, used_seats=5, price_per_unit=1200)
        engine = _engine(alert_repo, InMemorySubscriptionRepository(subscriptions=[sub]))

        [alert] = await engine.generate_low_utilization_alerts(org_id)

        assert alert.potential_savings == 15 * 1200
        assert alert.data.unused_seats == 15
        assert alert.data.utilization_pct == 25.0
        assert alert.alert_key == f"low_util:{sub.id}"

    @pytest.mark.asyncio
    async def test_unlimited_and_unseated_plans_skipped(self, org_id, alert_repo):
        unlimited = make_subscription(org_id, seats_unlimited=True, used_seats=1)
        unseated = make_subscription(org_id, total_seats=None, used_seats=0)
        engine = _engine(
            alert_repo, InMemorySubscriptionRepository(subscriptions=[unlimited, unseated])
        )

        assert await engine.generate_low_utilization_alerts(org_id) == []
        assert await engine.generate_seat_shortage_alerts(org_id) == []

    @pytest.mark.asyncio
    async def test_seat_shortage_severity(self, org_id, alert_repo):
        full = make_subscription(org_id, name="Full", total_seats=10, used_seats=10)
        near = make_subscription(org_id, name="Near", total_seats=10, used_seats=9)
        fine = make_subscription(org_id, name="Fine", total_seats=10, used_seats=6)
        engine = _engine(
            alert_repo, InMemorySubscriptionRepository(subscriptions=[full, near, fine])
        )

        alerts = {a.data.subscription_name: a for a in await engine.generate_seat_shortage_alerts(org_id)}

        assert set(alerts) == {"Full", "Near"}
        assert alerts["Full"].severity == AlertSeverity.CRITICAL
        assert alerts["Near"].severity == AlertSeverity.WARNING


class TestUnusedLicenseAlerts:
    @pytest.mark.asyncio
    async def test_stale_assignments_alerted(self, org_id, alert_repo):
        employee_id, subscription_id = uuid4(), uuid4()
        stale = UnusedAssignment(
            employee_id=employee_id,
            employee_name="Idle User",
            employee_email="idle@x.com",
            subscription_id=subscription_id,
            subscription_name="Zoom",
            price_per_unit=1499,
            last_used_at=NOW - timedelta(days=45),
        )
        recent = stale.model_copy(update={
            "employee_id": uuid4(), "last_used_at": NOW - timedelta(days=2),
        })
        engine = _engine(alert_repo, InMemorySubscriptionRepository(unused=[stale, recent]))

        [alert] = await engine.generate_unused_license_alerts(org_id)

        assert alert.alert_key == f"unused:{employee_id}:{subscription_id}"
        assert alert.data.days_unused == 45
        assert alert.potential_savings == 1499
        assert alert.severity == AlertSeverity.INFO


class TestDuplicateToolAlerts:
    @pytest.mark.asyncio
    async def test_savings_keep_most_expensive(self, org_id, alert_repo):
        subs = [
            make_subscription(org_id, name="Zoom", category="video", total_monthly_cost=5000),
            make_subscription(org_id, name="Meet", category="video", total_monthly_cost=3000),
            make_subscription(org_id, name="Webex", category="video", total_monthly_cost=1000),
            make_subscription(org_id, name="Slack", category="chat", total_monthly_cost=8000),
            make_subscription(org_id, name="Misc A", category="other"),
            make_subscription(org_id, name="Misc B", category="other"),
        ]
        engine = _engine(alert_repo, InMemorySubscriptionRepository(subscriptions=subs))

        [alert] = await engine.generate_duplicate_tool_alerts(org_id)

        assert alert.alert_key == "duplicate:video"
        assert alert.potential_savings == 4000
        assert {s.name for s in alert.data.subscriptions} == {"Zoom", "Meet", "Webex"}


class TestCostAnomalyAlerts:
    @pytest.mark.asyncio
    async def test_increase_above_threshold(self, org_id, alert_repo):
        spike = make_subscription(
            org_id, name="Spike", previous_monthly_cost=10000, total_monthly_cost=13000
        )
        small = make_subscription(
            org_id, name="Small", previous_monthly_cost=10000, total_monthly_cost=11500
        )
        new = make_subscription(
            org_id, name="New", previous_monthly_cost=None, total_monthly_cost=99999
        )
        engine = _engine(
            alert_repo, InMemorySubscriptionRepository(subscriptions=[spike, small, new])
        )

        [alert] = await engine.generate_cost_anomaly_alerts(org_id)

        assert alert.data.subscription_name == "Spike"
        assert alert.data.increase_pct == 30.0
        assert alert.potential_savings == 3000


# ---------------------------------------------------------------------------
# Generate all
# ---------------------------------------------------------------------------

class TestGenerateAll:
    @pytest.mark.asyncio
    async def test_counts_per_type_and_idempotent(self, org_id, alert_repo):
        subs = InMemorySubscriptionRepository(
            subscriptions=[
                make_subscription(
                    org_id, total_seats=10, used_seats=2,
                    renewal_date=TODAY + timedelta(days=10),
                ),
            ],
            holders=[_holder()],
        )
        engine = _engine(alert_repo, subs)

        counts = await engine.generate_all(org_id)
        again = await engine.generate_all(org_id)

        assert counts[AlertType.OFFBOARDING.value] == 1
        assert counts[AlertType.RENEWAL_UPCOMING.value] == 1
        assert counts[AlertType.LOW_UTILIZATION.value] == 1
        assert counts[AlertType.SEAT_SHORTAGE.value] == 0
        assert len(counts) == 8
        assert again == counts
        assert len(alert_repo.of_org(org_id)) == 3

    @pytest.mark.asyncio
    async def test_failing_generator_reported_as_zero(self, org_id, alert_repo):
        class _BrokenSubscriptions(InMemorySubscriptionRepository):
            async def list_active_subscriptions(self, organization_id):
                raise RuntimeError("subscriptions service down")

        engine = _engine(alert_repo, _BrokenSubscriptions(holders=[_holder()]))

        counts = await engine.generate_all(org_id)

        assert counts[AlertType.OFFBOARDING.value] == 1
        assert counts[AlertType.RENEWAL_UPCOMING.value] == 0


# ---------------------------------------------------------------------------
# Lifecycle and reporting
# ---------------------------------------------------------------------------

class TestLifecycleById:
    @pytest.mark.asyncio
    async def test_acknowledge_then_resolve_persists(self, org_id):
        alert = make_alert(org_id)
        repo = InMemoryAlertRepository([alert])
        engine = _engine(repo)

        await engine.acknowledge(alert.id, "ops@x.com")
        await engine.resolve(alert.id, "ops@x.com", "done")

        stored = await repo.find_by_id(alert.id)
        assert stored.status == AlertStatus.RESOLVED
        assert stored.acknowledged_by == "ops@x.com"

    @pytest.mark.asyncio
    async def test_unknown_alert_raises(self, alert_repo):
        with pytest.raises(AlertNotFound):
            await _engine(alert_repo).dismiss(uuid4(), "ops@x.com")

    @pytest.mark.asyncio
    async def test_invalid_transition_not_saved(self, org_id):
        alert = make_alert(org_id)
        repo = InMemoryAlertRepository([alert])
        engine = _engine(repo)
        await engine.dismiss(alert.id, "a", "noise")

        with pytest.raises(InvalidTransition):
            await engine.acknowledge(alert.id, "b")

        assert (await repo.find_by_id(alert.id)).status == AlertStatus.DISMISSED

    @pytest.mark.asyncio
    async def test_snooze_uses_engine_clock(self, org_id):
        alert = make_alert(org_id)
        repo = InMemoryAlertRepository([alert])
        engine = _engine(repo)

        snoozed = await engine.snooze(alert.id, "a", NOW + timedelta(days=1))
        assert snoozed.snoozed_until == NOW + timedelta(days=1)

        unsnoozed = await engine.unsnooze(alert.id)
        assert unsnoozed.snoozed_until is None

    @pytest.mark.asyncio
    async def test_create_custom_alert(self, org_id, alert_repo):
        alert = await _engine(alert_repo).create(
            org_id, AlertType.COST_ANOMALY, AlertSeverity.INFO, "Manual review",
            subscription_id=uuid4(), potential_savings=500, currency="USD",
        )
        assert (await alert_repo.find_by_id(alert.id)).title == "Manual review"


class TestReporting:
    @pytest.mark.asyncio
    async def test_counts_and_savings(self, org_id):
        pending = make_alert(org_id, potential_savings=1000)
        acked = make_alert(org_id, potential_savings=2000)
        acked.acknowledge("a")
        resolved = make_alert(org_id, potential_savings=4000)
        resolved.resolve("a")
        no_savings = make_alert(org_id)
        engine = _engine(InMemoryAlertRepository([pending, acked, resolved, no_savings]))

        counts = await engine.count_by_status(org_id)
        savings = await engine.calculate_potential_savings(org_id)

        assert (counts.pending, counts.acknowledged, counts.resolved, counts.dismissed) == (2, 1, 1, 0)
        assert savings == 3000

    @pytest.mark.asyncio
    async def test_delete_old_alerts_only_closed_and_old(self, org_id):
        old_resolved = make_alert(org_id)
        old_resolved.resolve("a")
        old_resolved.updated_at = datetime.now(timezone.utc) - timedelta(days=120)
        old_pending = make_alert(org_id)
        old_pending.updated_at = datetime.now(timezone.utc) - timedelta(days=120)
        fresh_dismissed = make_alert(org_id)
        fresh_dismissed.dismiss("a")
        repo = InMemoryAlertRepository([old_resolved, old_pending, fresh_dismissed])

        deleted = await _engine(repo, alert_retention_days=90).delete_old_alerts(org_id)

        assert deleted == 1
        assert old_resolved.id not in repo.alerts
        assert {old_pending.id, fresh_dismissed.id} <= set(repo.alerts)
