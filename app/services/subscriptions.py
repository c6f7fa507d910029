"""Subscription lifecycle: plan catalog, activation, plan changes and sweeps."""

from __future__ import annotations

import logging
import math
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.subscription import (
    UNLIMITED,
    BillingPeriod,
    PlanTier,
    PlanTierConfig,
    Subscription,
)
from app.models.user import User
from app.services.common import as_utc, coerce_uuid, get_or_404, utcnow, validate_enum
from app.services.errors import ConflictError, NotFoundError, ValidationError
from app.services.listings import listing_store

logger = logging.getLogger(__name__)

FREE_WINDOW_DAYS = 30
PERIOD_DAYS = {BillingPeriod.monthly: 30, BillingPeriod.yearly: 365}
TIER_RANK = {
    PlanTier.free: 0,
    PlanTier.starter: 1,
    PlanTier.professional: 2,
    PlanTier.premium: 3,
}

# Prices in minor units (PKR paisa)
PLAN_CATALOG = [
    {
        "tier": PlanTier.free,
        "name": "Free",
        "description": "Get started with a single listing.",
        "monthly_price": 0,
        "yearly_price": 0,
        "max_listings": 1,
        "max_featured_listings": 0,
        "has_analytics": False,
        "has_promotion": False,
        "has_priority": False,
        "features": ["1 active listing", "Basic profile"],
    },
    {
        "tier": PlanTier.starter,
        "name": "Starter",
        "description": "For agents building a portfolio.",
        "monthly_price": 299900,
        "yearly_price": 2999000,
        "max_listings": 10,
        "max_featured_listings": 0,
        "has_analytics": True,
        "has_promotion": False,
        "has_priority": False,
        "features": ["10 active listings", "Listing analytics"],
    },
    {
        "tier": PlanTier.professional,
        "name": "Professional",
        "description": "For established agents who promote listings.",
        "monthly_price": 799900,
        "yearly_price": 7999000,
        "max_listings": 50,
        "max_featured_listings": 5,
        "has_analytics": True,
        "has_promotion": True,
        "has_priority": False,
        "features": ["50 active listings", "5 featured listings", "Listing analytics"],
    },
    {
        "tier": PlanTier.premium,
        "name": "Premium",
        "description": "Unlimited listings with priority placement.",
        "monthly_price": 1999900,
        "yearly_price": 19999000,
        "max_listings": UNLIMITED,
        "max_featured_listings": UNLIMITED,
        "has_analytics": True,
        "has_promotion": True,
        "has_priority": True,
        "features": [
            "Unlimited listings",
            "Unlimited featured listings",
            "Priority support",
        ],
    },
]


class Plans:
    @staticmethod
    def seed(db: Session) -> int:
        """Insert missing catalog entries; existing rows are left untouched."""
        existing = {row.tier for row in db.query(PlanTierConfig.tier).all()}
        created = 0
        for entry in PLAN_CATALOG:
            if entry["tier"] in existing:
                continue
            db.add(PlanTierConfig(currency=settings.default_currency, **entry))
            created += 1
        if created:
            db.commit()
            logger.info("plan_catalog_seeded created=%s", created)
        return created

    @staticmethod
    def list(db: Session) -> list[PlanTierConfig]:
        return (
            db.query(PlanTierConfig)
            .filter(PlanTierConfig.is_active.is_(True))
            .order_by(PlanTierConfig.monthly_price.asc())
            .all()
        )

    @staticmethod
    def get(db: Session, tier) -> PlanTierConfig:
        tier = validate_enum(tier, PlanTier, "plan tier")
        plan = db.query(PlanTierConfig).filter(PlanTierConfig.tier == tier).first()
        if not plan:
            raise NotFoundError(f"Plan {tier.value} is not configured")
        return plan


def _period_end(start, billing_period: BillingPeriod):
    return start + timedelta(days=PERIOD_DAYS[billing_period])


class Subscriptions:
    @staticmethod
    def _ensure(db: Session, user_id) -> Subscription:
        """Return the user's subscription, inserting a FREE one if missing.

        Concurrent callers race on the unique user_id; the loser re-reads the
        winner's row inside its own savepoint.
        """
        user_id = coerce_uuid(user_id)
        subscription = (
            db.query(Subscription).filter(Subscription.user_id == user_id).first()
        )
        if subscription:
            return subscription
        get_or_404(db, User, user_id, detail="User not found")
        now = utcnow()
        free_plan = db.query(PlanTierConfig).filter(PlanTierConfig.tier == PlanTier.free).first()
        subscription = Subscription(
            user_id=user_id,
            tier=PlanTier.free,
            billing_period=BillingPeriod.monthly,
            start_date=now,
            end_date=now + timedelta(days=FREE_WINDOW_DAYS),
            is_active=True,
            auto_renew=False,
            listings_used=listing_store.count_active_or_pending(db, user_id),
            listings_limit=free_plan.max_listings if free_plan else 1,
        )
        try:
            with db.begin_nested():
                db.add(subscription)
        except IntegrityError:
            subscription = (
                db.query(Subscription).filter(Subscription.user_id == user_id).one()
            )
        return subscription

    @staticmethod
    def get_or_create(db: Session, user_id) -> Subscription:
        subscription = Subscriptions._ensure(db, user_id)
        db.commit()
        return subscription

    @staticmethod
    def lock(db: Session, user_id) -> Subscription:
        """Ensure the subscription exists and take a row lock on it."""
        Subscriptions._ensure(db, user_id)
        return (
            db.query(Subscription)
            .filter(Subscription.user_id == coerce_uuid(user_id))
            .populate_existing()
            .with_for_update()
            .one()
        )

    @staticmethod
    def activate(
        db: Session,
        user_id,
        tier,
        billing_period,
        *,
        commit: bool = True,
    ) -> Subscription:
        """Start a fresh period on `tier` and mirror it onto the user.

        With commit=False the caller owns the transaction (payment reconciliation).
        """
        tier = validate_enum(tier, PlanTier, "plan tier")
        billing_period = validate_enum(billing_period, BillingPeriod, "billing period")
        user = get_or_404(db, User, user_id, detail="User not found")
        plan = Plans.get(db, tier)
        subscription = Subscriptions.lock(db, user.id)

        start = utcnow()
        end = _period_end(start, billing_period)
        subscription.tier = tier
        subscription.billing_period = billing_period
        subscription.start_date = start
        subscription.end_date = end
        subscription.renewal_date = end
        subscription.is_active = True
        subscription.canceled_at = None
        subscription.expired_at = None
        subscription.listings_limit = plan.max_listings

        user.current_plan = tier
        user.plan_start_date = start
        user.plan_end_date = end

        if commit:
            db.commit()
            db.refresh(subscription)
        else:
            db.flush()
        logger.info(
            "subscription_activated user_id=%s tier=%s period=%s end=%s",
            user.id,
            tier.value,
            billing_period.value,
            end.isoformat(),
        )
        return subscription

    @staticmethod
    def change_plan(db: Session, user_id, new_tier) -> Subscription:
        """Move to a lower tier when the active listings fit its cap.

        Upgrades are paid for through a plan-purchase charge instead.
        """
        new_tier = validate_enum(new_tier, PlanTier, "plan tier")
        user = get_or_404(db, User, user_id, detail="User not found")
        new_plan = Plans.get(db, new_tier)
        subscription = Subscriptions.lock(db, user.id)

        if new_tier == subscription.tier:
            raise ValidationError(f"Already on the {new_plan.name} plan")
        if TIER_RANK[new_tier] > TIER_RANK[subscription.tier]:
            raise ValidationError("Upgrades require a plan purchase")

        active_listings = listing_store.count_active_or_pending(db, user.id)
        if new_plan.max_listings != UNLIMITED and active_listings > new_plan.max_listings:
            raise ConflictError(
                f"Cannot downgrade to {new_plan.name} because you have "
                f"{active_listings} active listings, exceeding the limit of "
                f"{new_plan.max_listings}"
            )

        subscription.tier = new_tier
        subscription.listings_limit = new_plan.max_listings
        subscription.listings_used = active_listings
        user.current_plan = new_tier
        db.commit()
        db.refresh(subscription)
        logger.info(
            "subscription_downgraded user_id=%s tier=%s", user.id, new_tier.value
        )
        return subscription

    @staticmethod
    def cancel(db: Session, user_id, notifier=None, reason: str | None = None) -> Subscription:
        user = get_or_404(db, User, user_id, detail="User not found")
        subscription = Subscriptions.lock(db, user.id)
        if not subscription.is_active and subscription.canceled_at is not None:
            raise ConflictError("Subscription is already cancelled")
        subscription.is_active = False
        subscription.auto_renew = False
        subscription.canceled_at = utcnow()
        user.current_plan = PlanTier.free
        db.commit()
        db.refresh(subscription)
        logger.info("subscription_cancelled user_id=%s", user.id)
        if notifier is not None:
            try:
                notifier.notify_subscription_cancellation(
                    db, user.id, {"plan_name": subscription.tier.value, "reason": reason}
                )
            except Exception:
                logger.exception("cancellation_notification_failed user_id=%s", user.id)
        return subscription

    @staticmethod
    def set_auto_renew(db: Session, user_id, enabled: bool) -> Subscription:
        subscription = Subscriptions.lock(db, user_id)
        subscription.auto_renew = enabled
        db.commit()
        db.refresh(subscription)
        return subscription

    @staticmethod
    def expire_due(db: Session, now=None) -> int:
        """Deactivate every active subscription whose end date has passed.

        Re-running finds nothing left to do.
        """
        now = now or utcnow()
        due = (
            db.query(Subscription)
            .filter(Subscription.is_active.is_(True))
            .filter(Subscription.end_date < now)
            .with_for_update()
            .all()
        )
        for subscription in due:
            subscription.is_active = False
            subscription.expired_at = now
            if subscription.user is not None:
                subscription.user.current_plan = PlanTier.free
        db.commit()
        if due:
            logger.info("subscriptions_expired count=%s", len(due))
        return len(due)

    @staticmethod
    def send_expiry_reminders(db: Session, notifier, now=None) -> int:
        """Remind non-auto-renewing users whose plan ends within the lookahead.

        Duplicate suppression across runs is left to the notifier.
        """
        now = now or utcnow()
        horizon = now + timedelta(days=settings.expiry_reminder_days)
        expiring = (
            db.query(Subscription)
            .filter(Subscription.is_active.is_(True))
            .filter(Subscription.auto_renew.is_(False))
            .filter(Subscription.end_date > now)
            .filter(Subscription.end_date <= horizon)
            .all()
        )
        targets = [(sub.user_id, sub.tier, as_utc(sub.end_date)) for sub in expiring]
        sent = 0
        for user_id, tier, end_date in targets:
            days_remaining = math.ceil((end_date - now).total_seconds() / 86400)
            try:
                notifier.notify_plan_expiry(
                    db,
                    user_id,
                    {
                        "plan_name": tier.value,
                        "days_remaining": days_remaining,
                        "end_date": end_date.isoformat(),
                    },
                )
                sent += 1
            except Exception:
                logger.exception("expiry_reminder_failed user_id=%s", user_id)
        logger.info("expiry_reminders_sent count=%s", sent)
        return sent

    @staticmethod
    def renew_due(db: Session, notifier, now=None) -> int:
        """Extend auto-renewing subscriptions that end within the renewal window."""
        now = now or utcnow()
        horizon = now + timedelta(hours=settings.auto_renew_window_hours)
        due = (
            db.query(Subscription)
            .filter(Subscription.is_active.is_(True))
            .filter(Subscription.auto_renew.is_(True))
            .filter(Subscription.end_date >= now)
            .filter(Subscription.end_date <= horizon)
            .with_for_update()
            .all()
        )
        renewed = []
        for subscription in due:
            new_end = _period_end(as_utc(subscription.end_date), subscription.billing_period)
            subscription.end_date = new_end
            subscription.renewal_date = new_end
            if subscription.user is not None:
                subscription.user.plan_end_date = new_end
            renewed.append((subscription.user_id, subscription.tier, new_end))
        db.commit()
        for user_id, tier, new_end in renewed:
            try:
                notifier.notify_subscription_renewal(
                    db,
                    user_id,
                    {"plan_name": tier.value, "end_date": new_end.isoformat()},
                )
            except Exception:
                logger.exception("renewal_notification_failed user_id=%s", user_id)
        if renewed:
            logger.info("subscriptions_renewed count=%s", len(renewed))
        return len(renewed)


plans = Plans()
subscriptions = Subscriptions()
