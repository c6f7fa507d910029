import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class SecurityDepositStatus(enum.Enum):
    pending = "PENDING"
    approved = "APPROVED"
    rejected = "REJECTED"
    refunded = "REFUNDED"


OPEN_DEPOSIT_STATUSES = (SecurityDepositStatus.pending, SecurityDepositStatus.approved)

_OPEN_DEPOSIT_PREDICATE = text("status IN ('PENDING', 'APPROVED')")


class SecurityDeposit(Base):
    __tablename__ = "security_deposits"
    __table_args__ = (
        # At most one pending-or-approved deposit per user
        Index(
            "uq_security_deposits_open_per_user",
            "user_id",
            unique=True,
            postgresql_where=_OPEN_DEPOSIT_PREDICATE,
            sqlite_where=_OPEN_DEPOSIT_PREDICATE,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)  # minor units
    currency: Mapped[str] = mapped_column(String(3), default="PKR")
    status: Mapped[SecurityDepositStatus] = mapped_column(
        Enum(SecurityDepositStatus), default=SecurityDepositStatus.pending
    )
    payment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payments.id")
    )
    transaction_reference: Mapped[str | None] = mapped_column(String(160))

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refund_amount: Mapped[int | None] = mapped_column(BigInteger)
    refund_reason: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    user = relationship("User", back_populates="security_deposits", foreign_keys=[user_id])
    approver = relationship("User", foreign_keys=[approved_by])
    payment = relationship("Payment", foreign_keys=[payment_id], post_update=True)
