import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Enum, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.models.subscription import PlanTier


class UserRole(enum.Enum):
    agent = "agent"
    buyer = "buyer"
    admin = "admin"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[str | None] = mapped_column(String(80))
    last_name: Mapped[str | None] = mapped_column(String(80))
    phone_number: Mapped[str | None] = mapped_column(String(40))
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.agent)

    # Denormalized mirror of the effective subscription, for display
    current_plan: Mapped[PlanTier] = mapped_column(Enum(PlanTier), default=PlanTier.free)
    plan_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    plan_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    is_premium_license: Mapped[bool] = mapped_column(Boolean, default=False)
    premium_tick: Mapped[bool] = mapped_column(Boolean, default=False)

    email_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    sms_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    subscription = relationship("Subscription", back_populates="user", uselist=False)
    payments = relationship(
        "Payment", back_populates="user", foreign_keys="Payment.user_id"
    )
    listings = relationship("Listing", back_populates="agent")
    security_deposits = relationship(
        "SecurityDeposit",
        back_populates="user",
        foreign_keys="SecurityDeposit.user_id",
    )

    @property
    def display_name(self) -> str:
        return self.first_name or "Agent"
