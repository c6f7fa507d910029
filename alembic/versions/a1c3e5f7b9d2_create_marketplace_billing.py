"""create marketplace billing tables

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = "a1c3e5f7b9d2"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

plan_tier = sa.Enum("FREE", "STARTER", "PROFESSIONAL", "PREMIUM", name="plantier")
billing_period = sa.Enum("MONTHLY", "YEARLY", name="billingperiod")
user_role = sa.Enum("agent", "buyer", "admin", name="userrole")
listing_status = sa.Enum(
    "PENDING", "ACTIVE", "ARCHIVED", "REJECTED", "SOLD", name="listingstatus"
)
deposit_status = sa.Enum(
    "PENDING", "APPROVED", "REJECTED", "REFUNDED", name="securitydepositstatus"
)
payment_status = sa.Enum("PENDING", "COMPLETED", "FAILED", "REFUNDED", name="paymentstatus")
payment_gateway = sa.Enum("JAZZCASH", "EASYPAISA", "CARD", name="paymentgateway")
payment_purpose = sa.Enum(
    "plan_purchase", "security_deposit", "generic", name="paymentpurposetype"
)
callback_outcome = sa.Enum("SUCCESS", "FAILURE", name="callbackoutcome")
callback_result = sa.Enum(
    "processed", "duplicate", "anomaly", "unmatched", "ignored", name="callbackresult"
)
notification_type = sa.Enum(
    "payment_success",
    "payment_failure",
    "plan_expiry",
    "subscription_renewal",
    "deposit_approval",
    "deposit_rejection",
    "payment_refunded",
    "premium_license_approval",
    "subscription_cancellation",
    name="notificationtype",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(80)),
        sa.Column("last_name", sa.String(80)),
        sa.Column("phone_number", sa.String(40)),
        sa.Column("role", user_role, nullable=False, server_default="agent"),
        sa.Column("current_plan", plan_tier, nullable=False, server_default="FREE"),
        sa.Column("plan_start_date", sa.DateTime(timezone=True)),
        sa.Column("plan_end_date", sa.DateTime(timezone=True)),
        sa.Column("is_premium_license", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("premium_tick", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("email_notifications", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("sms_notifications", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "plan_tier_configs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tier", plan_tier, nullable=False, unique=True),
        sa.Column("name", sa.String(80), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("currency", sa.String(3), nullable=False, server_default="PKR"),
        sa.Column("monthly_price", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("yearly_price", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("max_listings", sa.Integer, nullable=False, server_default="1"),
        sa.Column("max_featured_listings", sa.Integer, nullable=False, server_default="0"),
        sa.Column("has_analytics", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("has_promotion", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("has_priority", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("features", sa.JSON),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("tier", plan_tier, nullable=False, server_default="FREE"),
        sa.Column("billing_period", billing_period, nullable=False, server_default="MONTHLY"),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("renewal_date", sa.DateTime(timezone=True)),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("auto_renew", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("listings_used", sa.Integer, nullable=False, server_default="0"),
        sa.Column("listings_limit", sa.Integer, nullable=False, server_default="1"),
        sa.Column("canceled_at", sa.DateTime(timezone=True)),
        sa.Column("expired_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.CheckConstraint("end_date >= start_date", name="ck_subscriptions_dates"),
        sa.CheckConstraint("listings_used >= 0", name="ck_subscriptions_listings_used"),
    )
    op.create_index(
        "ix_subscriptions_active_end_date", "subscriptions", ["is_active", "end_date"]
    )

    op.create_table(
        "listings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("agent_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("status", listing_status, nullable=False, server_default="PENDING"),
        sa.Column("is_featured", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_listings_agent_status", "listings", ["agent_id", "status"])

    op.create_table(
        "security_deposits",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.BigInteger, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="PKR"),
        sa.Column("status", deposit_status, nullable=False, server_default="PENDING"),
        sa.Column("payment_id", UUID(as_uuid=True)),
        sa.Column("transaction_reference", sa.String(160)),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("approved_by", UUID(as_uuid=True), sa.ForeignKey("users.id")),
        sa.Column("rejected_at", sa.DateTime(timezone=True)),
        sa.Column("rejection_reason", sa.Text),
        sa.Column("refunded_at", sa.DateTime(timezone=True)),
        sa.Column("refund_amount", sa.BigInteger),
        sa.Column("refund_reason", sa.Text),
        *_timestamps(),
    )
    op.create_index(
        "uq_security_deposits_open_per_user",
        "security_deposits",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('PENDING', 'APPROVED')"),
    )

    op.create_table(
        "payments",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.BigInteger, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="PKR"),
        sa.Column("gateway", payment_gateway, nullable=False),
        sa.Column("provider_reference", sa.String(160)),
        sa.Column("provider_transaction_id", sa.String(160)),
        sa.Column("status", payment_status, nullable=False, server_default="PENDING"),
        sa.Column("description", sa.Text),
        sa.Column("purpose", payment_purpose, nullable=False, server_default="generic"),
        sa.Column("plan_tier", plan_tier),
        sa.Column("billing_period", billing_period),
        sa.Column(
            "deposit_id", UUID(as_uuid=True), sa.ForeignKey("security_deposits.id")
        ),
        sa.Column("failure_reason", sa.Text),
        sa.Column("fulfilled_at", sa.DateTime(timezone=True)),
        sa.Column("refund_amount", sa.BigInteger),
        sa.Column("refund_reason", sa.Text),
        sa.Column("refunded_at", sa.DateTime(timezone=True)),
        sa.Column("refunded_by", UUID(as_uuid=True), sa.ForeignKey("users.id")),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.UniqueConstraint(
            "gateway", "provider_reference", name="uq_payments_gateway_provider_reference"
        ),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )
    op.create_index("ix_payments_user_created", "payments", ["user_id", "created_at"])
    op.create_foreign_key(
        "fk_security_deposits_payment_id",
        "security_deposits",
        "payments",
        ["payment_id"],
        ["id"],
    )

    op.create_table(
        "payment_callbacks",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("payment_id", UUID(as_uuid=True), sa.ForeignKey("payments.id")),
        sa.Column("gateway", payment_gateway, nullable=False),
        sa.Column("provider_reference", sa.String(160)),
        sa.Column("outcome", callback_outcome),
        sa.Column("result", callback_result, nullable=False),
        sa.Column("provider_amount", sa.BigInteger),
        sa.Column("detail", sa.Text),
        sa.Column("payload", sa.JSON),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_payment_callbacks_payment_id", "payment_callbacks", ["payment_id"]
    )

    op.create_table(
        "user_notifications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("notification_type", notification_type, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("data", sa.JSON),
        sa.Column("email_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("sms_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("last_error", sa.Text),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("dedupe_key", sa.String(200)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_user_notifications_dedupe_key", "user_notifications", ["dedupe_key"]
    )


def downgrade() -> None:
    op.drop_index("ix_user_notifications_dedupe_key", table_name="user_notifications")
    op.drop_table("user_notifications")
    op.drop_index("ix_payment_callbacks_payment_id", table_name="payment_callbacks")
    op.drop_table("payment_callbacks")
    op.drop_constraint(
        "fk_security_deposits_payment_id", "security_deposits", type_="foreignkey"
    )
    op.drop_index("ix_payments_user_created", table_name="payments")
    op.drop_table("payments")
    op.drop_index("uq_security_deposits_open_per_user", table_name="security_deposits")
    op.drop_table("security_deposits")
    op.drop_index("ix_listings_agent_status", table_name="listings")
    op.drop_table("listings")
    op.drop_index("ix_subscriptions_active_end_date", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("plan_tier_configs")
    op.drop_table("users")
    bind = op.get_bind()
    for enum_type in (
        notification_type,
        callback_result,
        callback_outcome,
        payment_purpose,
        payment_gateway,
        payment_status,
        deposit_status,
        listing_status,
        user_role,
        billing_period,
        plan_tier,
    ):
        enum_type.drop(bind, checkfirst=True)
