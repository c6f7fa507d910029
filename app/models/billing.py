import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.models.subscription import BillingPeriod, PlanTier


class PaymentStatus(enum.Enum):
    pending = "PENDING"
    completed = "COMPLETED"
    failed = "FAILED"
    refunded = "REFUNDED"


class PaymentGateway(enum.Enum):
    jazzcash = "JAZZCASH"
    easypaisa = "EASYPAISA"
    card = "CARD"


class PaymentPurposeType(enum.Enum):
    plan_purchase = "plan_purchase"
    security_deposit = "security_deposit"
    generic = "generic"


class CallbackOutcome(enum.Enum):
    success = "SUCCESS"
    failure = "FAILURE"


class CallbackResult(enum.Enum):
    processed = "processed"
    duplicate = "duplicate"
    anomaly = "anomaly"
    unmatched = "unmatched"
    ignored = "ignored"


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint(
            "gateway",
            "provider_reference",
            name="uq_payments_gateway_provider_reference",
        ),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("ix_payments_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)  # minor units
    currency: Mapped[str] = mapped_column(String(3), default="PKR")
    gateway: Mapped[PaymentGateway] = mapped_column(Enum(PaymentGateway), nullable=False)
    provider_reference: Mapped[str | None] = mapped_column(String(160))
    provider_transaction_id: Mapped[str | None] = mapped_column(String(160))
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.pending
    )
    description: Mapped[str | None] = mapped_column(Text)

    # Purpose tag plus the typed fields each purpose uses
    purpose: Mapped[PaymentPurposeType] = mapped_column(
        Enum(PaymentPurposeType), default=PaymentPurposeType.generic
    )
    plan_tier: Mapped[PlanTier | None] = mapped_column(Enum(PlanTier))
    billing_period: Mapped[BillingPeriod | None] = mapped_column(Enum(BillingPeriod))
    deposit_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("security_deposits.id", use_alter=True)
    )

    failure_reason: Mapped[str | None] = mapped_column(Text)
    fulfilled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refund_amount: Mapped[int | None] = mapped_column(BigInteger)
    refund_reason: Mapped[str | None] = mapped_column(Text)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refunded_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    user = relationship("User", back_populates="payments", foreign_keys=[user_id])
    deposit = relationship("SecurityDeposit", foreign_keys=[deposit_id])
    callbacks = relationship("PaymentCallback", back_populates="payment")


class PaymentCallback(Base):
    """Audit trail of verified gateway callbacks."""

    __tablename__ = "payment_callbacks"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    payment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payments.id"), index=True
    )
    gateway: Mapped[PaymentGateway] = mapped_column(Enum(PaymentGateway), nullable=False)
    provider_reference: Mapped[str | None] = mapped_column(String(160))
    outcome: Mapped[CallbackOutcome | None] = mapped_column(Enum(CallbackOutcome))
    result: Mapped[CallbackResult] = mapped_column(Enum(CallbackResult), nullable=False)
    provider_amount: Mapped[int | None] = mapped_column(BigInteger)
    detail: Mapped[str | None] = mapped_column(Text)
    payload: Mapped[dict | None] = mapped_column(JSON)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

    payment = relationship("Payment", back_populates="callbacks")
