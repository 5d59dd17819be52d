"""
Alert Schemas

Alert entity, its lifecycle state machine and the typed per-type payloads.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from backend.errors import InvalidAlertKeyInput, InvalidSnoozeDate, InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertType(str, Enum):
    OFFBOARDING = "offboarding"  # Employee left, has active licenses
    RENEWAL_UPCOMING = "renewal_upcoming"
    UNUSED_LICENSE = "unused_license"
    LOW_UTILIZATION = "low_utilization"
    DUPLICATE_TOOL = "duplicate_tool"  # Similar tools in same category
    COST_ANOMALY = "cost_anomaly"
    SEAT_SHORTAGE = "seat_shortage"
    TRIAL_ENDING = "trial_ending"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"  # terminal
    DISMISSED = "dismissed"  # terminal


# ── Payloads ──


class LicenseRef(BaseModel):
    """A license an employee still holds on a subscription."""

    subscription_id: UUID
    name: str
    price_per_unit: int = Field(0, description="Monthly cost in currency minor units")
    currency: str = "USD"


class OffboardingData(BaseModel):
    kind: Literal["offboarding"] = "offboarding"
    employee_name: str
    employee_email: str
    offboarded_at: datetime | None = None
    active_license_count: int
    licenses: list[LicenseRef] = Field(default_factory=list)


class RenewalData(BaseModel):
    kind: Literal["renewal_upcoming"] = "renewal_upcoming"
    subscription_name: str
    renewal_date: date
    days_until_renewal: int
    auto_renew: bool = True
    monthly_cost: int = 0


class UnusedLicenseData(BaseModel):
    kind: Literal["unused_license"] = "unused_license"
    subscription_name: str
    employee_name: str
    employee_email: str
    last_used_at: datetime | None = None
    days_unused: int


class LowUtilizationData(BaseModel):
    kind: Literal["low_utilization"] = "low_utilization"
    subscription_name: str
    total_seats: int
    used_seats: int
    unused_seats: int
    utilization_pct: float


class DuplicateToolEntry(BaseModel):
    subscription_id: UUID
    name: str
    monthly_cost: int


class DuplicateToolData(BaseModel):
    kind: Literal["duplicate_tool"] = "duplicate_tool"
    category: str
    subscriptions: list[DuplicateToolEntry]


class CostAnomalyData(BaseModel):
    kind: Literal["cost_anomaly"] = "cost_anomaly"
    subscription_name: str
    previous_monthly_cost: int
    current_monthly_cost: int
    increase_pct: float


class SeatShortageData(BaseModel):
    kind: Literal["seat_shortage"] = "seat_shortage"
    subscription_name: str
    total_seats: int
    used_seats: int
    utilization_pct: float


class TrialEndingData(BaseModel):
    kind: Literal["trial_ending"] = "trial_ending"
    subscription_name: str
    trial_end_date: date
    days_remaining: int


AlertData = Annotated[
    Union[
        OffboardingData,
        RenewalData,
        UnusedLicenseData,
        LowUtilizationData,
        DuplicateToolData,
        CostAnomalyData,
        SeatShortageData,
        TrialEndingData,
    ],
    Field(discriminator="kind"),
]


def generate_alert_key(
    alert_type: AlertType,
    employee_id: UUID | str | None = None,
    subscription_id: UUID | str | None = None,
    category: str | None = None,
) -> str:
    """
    Build the deduplication key for an alert.

    Key format:
    - offboarding: ``offboarding:{employee_id}``
    - renewal_upcoming: ``renewal:{subscription_id}``
    - unused_license: ``unused:{employee_id}:{subscription_id}``
    - low_utilization: ``low_util:{subscription_id}``
    - duplicate_tool: ``duplicate:{category}``
    - cost_anomaly / seat_shortage / trial_ending: ``{type}:{subscription_id}``

    Raises:
        InvalidAlertKeyInput: If a field the type requires is missing
    """
    alert_type = AlertType(alert_type)

    def require(**fields) -> None:
        missing = [name for name, value in fields.items() if not value]
        if missing:
            raise InvalidAlertKeyInput(alert_type.value, missing)

    if alert_type == AlertType.OFFBOARDING:
        require(employee_id=employee_id)
        return f"offboarding:{employee_id}"
    if alert_type == AlertType.UNUSED_LICENSE:
        require(employee_id=employee_id, subscription_id=subscription_id)
        return f"unused:{employee_id}:{subscription_id}"
    if alert_type == AlertType.DUPLICATE_TOOL:
        require(category=category)
        return f"duplicate:{category}"

    require(subscription_id=subscription_id)
    prefix = {
        AlertType.RENEWAL_UPCOMING: "renewal",
        AlertType.LOW_UTILIZATION: "low_util",
    }.get(alert_type, alert_type.value)
    return f"{prefix}:{subscription_id}"


class Alert(BaseModel):
    """
    Organization-scoped alert about something that needs attention.

    Status only changes through the lifecycle methods; each of them
    stamps ``updated_at``.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    organization_id: UUID
    type: AlertType
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.PENDING
    title: str
    description: str | None = None

    employee_id: UUID | None = None
    subscription_id: UUID | None = None
    data: AlertData | None = None

    potential_savings: int | None = Field(None, description="Currency minor units")
    currency: str | None = None

    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution_notes: str | None = None
    dismissed_at: datetime | None = None
    dismissed_by: str | None = None
    dismiss_reason: str | None = None
    snoozed_until: datetime | None = None
    snoozed_by: str | None = None

    alert_key: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _payload_matches_type(self) -> "Alert":
        if self.data is not None and self.data.kind != self.type.value:
            raise ValueError(
                f"Alert payload '{self.data.kind}' does not match alert type '{self.type.value}'"
            )
        return self

    @classmethod
    def create(
        cls,
        organization_id: UUID,
        type: AlertType,
        severity: AlertSeverity,
        title: str,
        **fields,
    ) -> "Alert":
        """Create a new pending alert."""
        now = utcnow()
        return cls(
            organization_id=organization_id,
            type=type,
            severity=severity,
            title=title,
            status=AlertStatus.PENDING,
            created_at=now,
            updated_at=now,
            **fields,
        )

    # Computed

    def is_snoozed(self, now: datetime | None = None) -> bool:
        if self.snoozed_until is None:
            return False
        return self.snoozed_until > (now or utcnow())

    @property
    def is_open(self) -> bool:
        return self.status in (AlertStatus.PENDING, AlertStatus.ACKNOWLEDGED)

    @property
    def is_critical(self) -> bool:
        return self.severity == AlertSeverity.CRITICAL

    # Lifecycle

    def acknowledge(self, by: str) -> None:
        if self.status != AlertStatus.PENDING:
            raise InvalidTransition("acknowledge", self.status.value)
        now = utcnow()
        self.status = AlertStatus.ACKNOWLEDGED
        self.acknowledged_at = now
        self.acknowledged_by = by
        self.updated_at = now

    def resolve(self, by: str, notes: str | None = None) -> None:
        """Resolve the alert. A second resolve keeps the first resolver."""
        if self.status == AlertStatus.RESOLVED:
            return
        if self.status == AlertStatus.DISMISSED:
            raise InvalidTransition("resolve", self.status.value)
        now = utcnow()
        self.status = AlertStatus.RESOLVED
        self.resolved_at = now
        self.resolved_by = by
        self.resolution_notes = notes
        self.updated_at = now

    def dismiss(self, by: str, reason: str | None = None) -> None:
        if not self.is_open:
            raise InvalidTransition("dismiss", self.status.value)
        now = utcnow()
        self.status = AlertStatus.DISMISSED
        self.dismissed_at = now
        self.dismissed_by = by
        self.dismiss_reason = reason
        self.updated_at = now

    def snooze(self, by: str, until: datetime, now: datetime | None = None) -> None:
        if self.status != AlertStatus.PENDING:
            raise InvalidTransition("snooze", self.status.value)
        now = now or utcnow()
        if until.tzinfo is None:
            until = until.replace(tzinfo=timezone.utc)
        if until <= now:
            raise InvalidSnoozeDate(f"Snooze date {until.isoformat()} must be in the future")
        self.snoozed_until = until
        self.snoozed_by = by
        self.updated_at = utcnow()

    def unsnooze(self) -> None:
        self.snoozed_until = None
        self.snoozed_by = None
        self.updated_at = utcnow()

    def update_severity(self, severity: AlertSeverity) -> None:
        self.severity = AlertSeverity(severity)
        self.updated_at = utcnow()

    def update_potential_savings(self, amount: int, currency: str = "USD") -> None:
        self.potential_savings = amount
        self.currency = currency
        self.updated_at = utcnow()


class AlertCounts(BaseModel):
    """Alert totals per lifecycle status."""

    pending: int = 0
    acknowledged: int = 0
    resolved: int = 0
    dismissed: int = 0
