from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.security_deposit import SecurityDepositStatus


class DepositApply(BaseModel):
    user_id: UUID
    gateway: str = Field(min_length=1, max_length=40)
    return_url: str | None = Field(default=None, max_length=500)


class DepositApplyResponse(BaseModel):
    deposit_id: UUID
    payment_id: UUID
    redirect_target: str


class DepositReview(BaseModel):
    admin_id: UUID
    outcome: str = Field(min_length=1, max_length=20)
    reason: str | None = Field(default=None, max_length=500)


class SecurityDepositRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    amount: int
    currency: str
    status: SecurityDepositStatus
    payment_id: UUID | None = None
    transaction_reference: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    refunded_at: datetime | None = None
    refund_amount: int | None = None
    refund_reason: str | None = None
    created_at: datetime
