from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.billing import PaymentGateway, PaymentPurposeType, PaymentStatus
from app.models.subscription import BillingPeriod, PlanTier


class ChargeCreate(BaseModel):
    user_id: UUID
    amount: int = Field(gt=0, description="Amount in minor units")
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    description: str | None = Field(default=None, max_length=255)
    gateway: str = Field(min_length=1, max_length=40)
    plan_tier: str | None = None
    billing_period: str | None = None
    return_url: str | None = Field(default=None, max_length=500)


class ChargeResponse(BaseModel):
    payment_id: UUID
    provider_reference: str | None = None
    redirect_target: str


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    amount: int
    currency: str
    gateway: PaymentGateway
    provider_reference: str | None = None
    provider_transaction_id: str | None = None
    status: PaymentStatus
    description: str | None = None
    purpose: PaymentPurposeType
    plan_tier: PlanTier | None = None
    billing_period: BillingPeriod | None = None
    deposit_id: UUID | None = None
    failure_reason: str | None = None
    refund_amount: int | None = None
    refund_reason: str | None = None
    refunded_at: datetime | None = None
    created_at: datetime
    processed_at: datetime | None = None


class RefundRequest(BaseModel):
    admin_id: UUID
    amount: int | None = Field(default=None, gt=0)
    reason: str = Field(min_length=1, max_length=500)
