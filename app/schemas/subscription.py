from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.listing import ListingStatus
from app.models.subscription import BillingPeriod, PlanTier


class PlanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tier: PlanTier
    name: str
    description: str | None = None
    currency: str
    monthly_price: int
    yearly_price: int
    max_listings: int
    max_featured_listings: int
    has_analytics: bool
    has_promotion: bool
    has_priority: bool
    features: list[str] | None = None


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    tier: PlanTier
    billing_period: BillingPeriod
    start_date: datetime
    end_date: datetime
    renewal_date: datetime | None = None
    is_active: bool
    auto_renew: bool
    listings_used: int
    listings_limit: int
    canceled_at: datetime | None = None


class CapacityRead(BaseModel):
    total: int
    used: int
    remaining: int
    unlimited: bool


class EntitlementCheck(BaseModel):
    user_id: UUID
    wants_featured: bool = False


class EntitlementResponse(BaseModel):
    allowed: bool
    reason: str | None = None
    limit: int | None = None


class ChangePlanRequest(BaseModel):
    tier: str = Field(min_length=1, max_length=20)


class AutoRenewRequest(BaseModel):
    enabled: bool


class ListingPublish(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    featured: bool = False


class ListingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    agent_id: UUID
    title: str
    description: str | None = None
    status: ListingStatus
    is_featured: bool
    created_at: datetime
    archived_at: datetime | None = None


class SweepResult(BaseModel):
    processed: int
