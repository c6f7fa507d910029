"""Tests for the subscription lifecycle and scheduled sweeps."""

from datetime import timedelta

import pytest

from app.models.listing import Listing, ListingStatus
from app.models.subscription import BillingPeriod, PlanTier, PlanTierConfig
from app.services.common import as_utc, utcnow
from app.services.errors import ConflictError, NotFoundError, ValidationError
from app.services.subscriptions import PLAN_CATALOG, Plans, Subscriptions
from tests.mocks import FakeNotificationDispatcher


def _add_listings(db_session, user, count, status=ListingStatus.active):
    for index in range(count):
        db_session.add(Listing(agent_id=user.id, title=f"Listing {index}", status=status))
    db_session.commit()


def test_seed_is_idempotent(db_session):
    assert Plans.seed(db_session) == 0
    assert db_session.query(PlanTierConfig).count() == len(PLAN_CATALOG)


def test_plans_are_listed_cheapest_first(db_session):
    tiers = [plan.tier for plan in Plans.list(db_session)]

    assert tiers == [PlanTier.free, PlanTier.starter, PlanTier.professional, PlanTier.premium]


def test_get_unknown_plan_tier(db_session):
    with pytest.raises(ValidationError):
        Plans.get(db_session, "DIAMOND")


def test_new_user_gets_free_subscription(db_session, agent):
    subscription = Subscriptions.get_or_create(db_session, agent.id)

    assert subscription.tier == PlanTier.free
    assert subscription.is_active is True
    assert subscription.listings_limit == 1
    assert Subscriptions.get_or_create(db_session, agent.id).id == subscription.id


def test_get_or_create_for_missing_user(db_session):
    with pytest.raises(NotFoundError):
        Subscriptions.get_or_create(db_session, "00000000-0000-0000-0000-000000000001")


@pytest.mark.parametrize(
    ("period", "days"),
    [(BillingPeriod.monthly, 30), (BillingPeriod.yearly, 365)],
)
def test_activate_sets_period_length(db_session, agent, period, days):
    subscription = Subscriptions.activate(db_session, agent.id, PlanTier.starter, period)

    assert subscription.end_date - subscription.start_date == timedelta(days=days)
    assert subscription.billing_period == period
    db_session.refresh(agent)
    assert agent.current_plan == PlanTier.starter
    assert agent.plan_end_date == subscription.end_date


def test_downgrade_rejected_when_listings_exceed_cap(db_session, agent):
    Subscriptions.activate(db_session, agent.id, PlanTier.premium, BillingPeriod.monthly)
    _add_listings(db_session, agent, 12)

    with pytest.raises(ConflictError) as exc_info:
        Subscriptions.change_plan(db_session, agent.id, PlanTier.starter)

    assert "12 active listings" in exc_info.value.message
    db_session.rollback()
    subscription = Subscriptions.get_or_create(db_session, agent.id)
    assert subscription.tier == PlanTier.premium


def test_downgrade_within_cap(db_session, agent):
    Subscriptions.activate(db_session, agent.id, PlanTier.professional, BillingPeriod.monthly)
    _add_listings(db_session, agent, 3)

    subscription = Subscriptions.change_plan(db_session, agent.id, "STARTER")

    assert subscription.tier == PlanTier.starter
    assert subscription.listings_limit == 10
    assert subscription.listings_used == 3


def test_change_plan_refuses_upgrade(db_session, agent):
    with pytest.raises(ValidationError):
        Subscriptions.change_plan(db_session, agent.id, PlanTier.premium)


def test_cancel_twice_conflicts(db_session, agent):
    Subscriptions.activate(db_session, agent.id, PlanTier.starter, BillingPeriod.monthly)

    subscription = Subscriptions.cancel(db_session, agent.id)

    assert subscription.is_active is False
    assert subscription.canceled_at is not None
    with pytest.raises(ConflictError):
        Subscriptions.cancel(db_session, agent.id)


def test_cancel_sends_notice_after_commit(db_session, agent, notifier):
    Subscriptions.activate(db_session, agent.id, PlanTier.starter, BillingPeriod.monthly)

    Subscriptions.cancel(db_session, agent.id, notifier, reason="Moving abroad")

    assert notifier.calls == [
        (
            "subscription_cancellation",
            agent.id,
            {"plan_name": "STARTER", "reason": "Moving abroad"},
        )
    ]


def test_cancel_survives_notification_failure(db_session, agent):
    subscription = Subscriptions.cancel(
        db_session, agent.id, FakeNotificationDispatcher(fail=True)
    )

    assert subscription.is_active is False
    db_session.refresh(agent)
    assert agent.current_plan == PlanTier.free


def test_expire_due_is_idempotent(db_session, agent):
    subscription = Subscriptions.activate(
        db_session, agent.id, PlanTier.starter, BillingPeriod.monthly
    )
    subscription.start_date = utcnow() - timedelta(days=31)
    subscription.end_date = utcnow() - timedelta(hours=1)
    db_session.commit()

    assert Subscriptions.expire_due(db_session) == 1
    assert Subscriptions.expire_due(db_session) == 0

    db_session.refresh(subscription)
    db_session.refresh(agent)
    assert subscription.is_active is False
    assert subscription.expired_at is not None
    assert agent.current_plan == PlanTier.free


def test_expiry_reminders_target_non_renewing_users(db_session, agent):
    now = utcnow()
    subscription = Subscriptions.activate(
        db_session, agent.id, PlanTier.starter, BillingPeriod.monthly
    )
    subscription.end_date = now + timedelta(days=3)
    db_session.commit()
    notifier = FakeNotificationDispatcher()

    sent = Subscriptions.send_expiry_reminders(db_session, notifier, now=now)

    assert sent == 1
    name, user_id, payload = notifier.calls[0]
    assert (name, user_id) == ("plan_expiry", agent.id)
    assert payload["days_remaining"] == 3
    assert payload["plan_name"] == "STARTER"


def test_expiry_reminders_skip_auto_renewing(db_session, agent):
    now = utcnow()
    subscription = Subscriptions.activate(
        db_session, agent.id, PlanTier.starter, BillingPeriod.monthly
    )
    subscription.end_date = now + timedelta(days=3)
    subscription.auto_renew = True
    db_session.commit()
    notifier = FakeNotificationDispatcher()

    assert Subscriptions.send_expiry_reminders(db_session, notifier, now=now) == 0
    assert notifier.calls == []


def test_expiry_reminder_failures_are_isolated(db_session, agent):
    now = utcnow()
    subscription = Subscriptions.activate(
        db_session, agent.id, PlanTier.starter, BillingPeriod.monthly
    )
    subscription.end_date = now + timedelta(days=2)
    db_session.commit()

    sent = Subscriptions.send_expiry_reminders(
        db_session, FakeNotificationDispatcher(fail=True), now=now
    )

    assert sent == 0


def test_renew_due_extends_by_billing_period(db_session, agent):
    now = utcnow()
    subscription = Subscriptions.activate(
        db_session, agent.id, PlanTier.professional, BillingPeriod.monthly
    )
    Subscriptions.set_auto_renew(db_session, agent.id, True)
    original_end = now + timedelta(hours=6)
    subscription.end_date = original_end
    db_session.commit()
    notifier = FakeNotificationDispatcher()

    assert Subscriptions.renew_due(db_session, notifier, now=now) == 1

    db_session.refresh(subscription)
    assert as_utc(subscription.end_date) == original_end + timedelta(days=30)
    assert notifier.names() == ["subscription_renewal"]
    # Already pushed past the window
    assert Subscriptions.renew_due(db_session, notifier, now=now) == 0
