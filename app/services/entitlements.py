"""Listing entitlements derived from the user's subscription and plan."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.metrics import ENTITLEMENT_DENIALS
from app.models.listing import Listing, ListingStatus
from app.models.subscription import UNLIMITED, PlanTierConfig, Subscription
from app.services.common import as_utc, coerce_uuid, utcnow
from app.services.errors import EntitlementDenied, ValidationError
from app.services.listings import listing_store
from app.services.subscriptions import Plans, Subscriptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntitlementDecision:
    allowed: bool
    reason: str | None = None
    limit: int | None = None


ALLOWED = EntitlementDecision(allowed=True)


def _inactive_reason(subscription: Subscription, now) -> str | None:
    if not subscription.is_active:
        return "Subscription is not active"
    if as_utc(subscription.end_date) < now:
        return "Subscription has expired"
    return None


def _publish_decision(
    subscription: Subscription, plan: PlanTierConfig, used: int, now
) -> EntitlementDecision:
    reason = _inactive_reason(subscription, now)
    if reason:
        return EntitlementDecision(False, reason)
    if plan.max_listings == UNLIMITED:
        return ALLOWED
    if used >= plan.max_listings:
        return EntitlementDecision(
            False,
            f"You have reached your listing limit of {plan.max_listings}. "
            "Please upgrade your plan.",
            plan.max_listings,
        )
    return ALLOWED


def _featured_decision(
    subscription: Subscription, plan: PlanTierConfig, featured: int, now
) -> EntitlementDecision:
    if _inactive_reason(subscription, now):
        return EntitlementDecision(False, "Active subscription required for featured listings")
    if not plan.has_promotion:
        return EntitlementDecision(False, "Your plan does not support featured listings")
    if plan.max_featured_listings == UNLIMITED:
        return ALLOWED
    if featured >= plan.max_featured_listings:
        return EntitlementDecision(
            False,
            f"You have reached your featured listings limit of {plan.max_featured_listings}",
            plan.max_featured_listings,
        )
    return ALLOWED


class Entitlements:
    @staticmethod
    def can_publish(db: Session, user_id, now=None) -> EntitlementDecision:
        now = now or utcnow()
        subscription = Subscriptions.get_or_create(db, user_id)
        plan = Plans.get(db, subscription.tier)
        used = listing_store.count_active_or_pending(db, user_id)
        return _publish_decision(subscription, plan, used, now)

    @staticmethod
    def can_feature(db: Session, user_id, now=None) -> EntitlementDecision:
        now = now or utcnow()
        subscription = Subscriptions.get_or_create(db, user_id)
        plan = Plans.get(db, subscription.tier)
        featured = listing_store.count_featured(db, user_id)
        return _featured_decision(subscription, plan, featured, now)

    @staticmethod
    def check(db: Session, user_id, wants_featured: bool = False) -> EntitlementDecision:
        decision = Entitlements.can_publish(db, user_id)
        if decision.allowed and wants_featured:
            decision = Entitlements.can_feature(db, user_id)
        return decision

    @staticmethod
    def capacity(db: Session, user_id) -> dict:
        subscription = Subscriptions.get_or_create(db, user_id)
        plan = Plans.get(db, subscription.tier)
        used = listing_store.count_active_or_pending(db, user_id)
        if plan.max_listings == UNLIMITED:
            return {"total": UNLIMITED, "used": used, "remaining": UNLIMITED, "unlimited": True}
        return {
            "total": plan.max_listings,
            "used": used,
            "remaining": max(0, plan.max_listings - used),
            "unlimited": False,
        }

    @staticmethod
    def publish_listing(
        db: Session,
        user_id,
        *,
        title: str,
        description: str | None = None,
        featured: bool = False,
        now=None,
    ) -> Listing:
        """Check the quota and insert the listing in one transaction.

        The subscription row is locked for the duration and its listings_used
        snapshot is advanced with a compare-and-set, so two publishers that both
        read ``limit - 1`` cannot both insert.
        """
        if not title or not title.strip():
            raise ValidationError("Listing title is required")
        now = now or utcnow()
        user_id = coerce_uuid(user_id)
        subscription = Subscriptions.lock(db, user_id)
        snapshot = subscription.listings_used
        plan = Plans.get(db, subscription.tier)

        used = listing_store.count_active_or_pending(db, user_id)
        decision = _publish_decision(subscription, plan, used, now)
        if decision.allowed and featured:
            decision = _featured_decision(
                subscription, plan, listing_store.count_featured(db, user_id), now
            )
        if not decision.allowed:
            ENTITLEMENT_DENIALS.labels(kind="featured" if featured else "listing").inc()
            logger.info("listing_publish_denied user_id=%s reason=%s", user_id, decision.reason)
            raise EntitlementDenied(decision.reason, limit=decision.limit)

        claimed = (
            db.query(Subscription)
            .filter(Subscription.id == subscription.id)
            .filter(Subscription.listings_used == snapshot)
            .update({"listings_used": used + 1}, synchronize_session=False)
        )
        if claimed != 1:
            ENTITLEMENT_DENIALS.labels(kind="concurrent").inc()
            logger.warning("listing_publish_conflict user_id=%s snapshot=%s", user_id, snapshot)
            raise EntitlementDenied(
                "Listing quota changed while publishing; please retry",
                limit=None if plan.max_listings == UNLIMITED else plan.max_listings,
            )

        listing = listing_store.create(
            db,
            Listing(
                agent_id=user_id,
                title=title.strip(),
                description=description,
                status=ListingStatus.pending,
                is_featured=featured,
            ),
        )
        db.commit()
        db.refresh(listing)
        logger.info("listing_published user_id=%s listing_id=%s", user_id, listing.id)
        return listing

    @staticmethod
    def archive_listing(db: Session, user_id, listing_id) -> Listing:
        user_id = coerce_uuid(user_id)
        subscription = Subscriptions.lock(db, user_id)
        listing, freed_slot = listing_store.archive(db, user_id, listing_id)
        if freed_slot:
            subscription.listings_used = listing_store.count_active_or_pending(db, user_id)
        db.commit()
        db.refresh(listing)
        return listing


entitlements = Entitlements()
