import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base

UNLIMITED = -1


class PlanTier(enum.Enum):
    free = "FREE"
    starter = "STARTER"
    professional = "PROFESSIONAL"
    premium = "PREMIUM"


class BillingPeriod(enum.Enum):
    monthly = "MONTHLY"
    yearly = "YEARLY"


class PlanTierConfig(Base):
    __tablename__ = "plan_tier_configs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tier: Mapped[PlanTier] = mapped_column(Enum(PlanTier), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    currency: Mapped[str] = mapped_column(String(3), default="PKR")
    monthly_price: Mapped[int] = mapped_column(BigInteger, default=0)
    yearly_price: Mapped[int] = mapped_column(BigInteger, default=0)
    max_listings: Mapped[int] = mapped_column(Integer, default=1)
    max_featured_listings: Mapped[int] = mapped_column(Integer, default=0)
    has_analytics: Mapped[bool] = mapped_column(Boolean, default=False)
    has_promotion: Mapped[bool] = mapped_column(Boolean, default=False)
    has_priority: Mapped[bool] = mapped_column(Boolean, default=False)
    features: Mapped[list | None] = mapped_column(JSON)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    def price_for(self, billing_period: BillingPeriod) -> int:
        if billing_period == BillingPeriod.yearly:
            return self.yearly_price
        return self.monthly_price


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_subscriptions_dates"),
        CheckConstraint("listings_used >= 0", name="ck_subscriptions_listings_used"),
        Index("ix_subscriptions_active_end_date", "is_active", "end_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True
    )
    tier: Mapped[PlanTier] = mapped_column(Enum(PlanTier), default=PlanTier.free)
    billing_period: Mapped[BillingPeriod] = mapped_column(
        Enum(BillingPeriod), default=BillingPeriod.monthly
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    renewal_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=False)
    listings_used: Mapped[int] = mapped_column(Integer, default=0)
    listings_limit: Mapped[int] = mapped_column(Integer, default=1)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    user = relationship("User", back_populates="subscription")
