"""
Subscription Schemas

Read models for subscriptions and license assignments that feed alert generation.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from backend.schemas.alert import LicenseRef


class SubscriptionSnapshot(BaseModel):
    """Current state of one SaaS subscription. Amounts are in currency minor units."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    name: str
    category: str = "other"
    status: str = "active"
    currency: str = "USD"

    price_per_unit: int | None = None
    total_monthly_cost: int = 0
    previous_monthly_cost: int | None = None

    total_seats: int | None = None
    used_seats: int = 0
    seats_unlimited: bool = False

    auto_renew: bool = True
    renewal_date: date | None = None
    trial_end_date: date | None = None

    @property
    def utilization_pct(self) -> float | None:
        if self.seats_unlimited or not self.total_seats:
            return None
        return round(self.used_seats / self.total_seats * 100, 1)

    @property
    def unused_seats(self) -> int:
        if self.seats_unlimited or not self.total_seats:
            return 0
        return max(0, self.total_seats - self.used_seats)


class OffboardedLicenseHolder(BaseModel):
    """An offboarded employee who still holds active licenses."""

    employee_id: UUID
    name: str
    email: str
    offboarded_at: datetime | None = None
    licenses: list[LicenseRef] = Field(default_factory=list)

    @property
    def total_cost(self) -> int:
        return sum(license.price_per_unit for license in self.licenses)


class UnusedAssignment(BaseModel):
    """An active license assignment with no recent use."""

    employee_id: UUID
    employee_name: str
    employee_email: str
    subscription_id: UUID
    subscription_name: str
    price_per_unit: int = 0
    currency: str = "USD"
    assigned_at: datetime | None = None
    last_used_at: datetime | None = None
