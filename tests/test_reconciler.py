"""Tests for webhook reconciliation against the payment ledger."""

import json
import time

import pytest

from app.models.billing import CallbackResult, PaymentCallback, PaymentGateway, PaymentStatus
from app.models.security_deposit import SecurityDeposit, SecurityDepositStatus
from app.models.subscription import BillingPeriod, PlanTier, Subscription
from app.services.billing.purposes import DepositPurchase, PlanPurchase
from app.services.billing.reconciler import WebhookReconciler
from app.services.errors import AuthenticationError
from app.services.gateways import CallbackPayload
from app.services.gateways.card import compute_signature
from tests.conftest import CARD_WEBHOOK_SECRET, make_payment
from tests.mocks import FakeNotificationDispatcher

STARTER_MONTHLY = 299900


def _jazzcash_payload(adapter, reference, *, status="1", amount=STARTER_MONTHLY, **extra):
    params = {
        "pp_merchant_ref": reference,
        "pp_amount": str(amount),
        "pp_status": status,
        "pp_transaction_id": "T-" + reference,
        "pp_password": "jc-password",
        **extra,
    }
    params["pp_secure_hash"] = adapter.secure_hash(params)
    return CallbackPayload(params=params)


def _card_payload(event_type, reference, amount=STARTER_MONTHLY):
    body = json.dumps(
        {"type": event_type, "data": {"object": {"id": reference, "amount": amount}}}
    ).encode("utf-8")
    timestamp = int(time.time())
    signature = compute_signature(CARD_WEBHOOK_SECRET, timestamp, body)
    return CallbackPayload(
        raw_body=body, headers={"stripe-signature": f"t={timestamp},v1={signature}"}
    )


def _plan_payment(db_session, user, reference="JCPLAN0001"):
    return make_payment(
        db_session,
        user,
        amount=STARTER_MONTHLY,
        purpose=PlanPurchase(PlanTier.starter, BillingPeriod.monthly),
        reference=reference,
    )


def _deposit_payment(db_session, user, reference="JCDEP0001"):
    deposit = SecurityDeposit(
        user_id=user.id,
        amount=2500000,
        currency="PKR",
        status=SecurityDepositStatus.pending,
    )
    db_session.add(deposit)
    db_session.flush()
    payment = make_payment(
        db_session,
        user,
        amount=2500000,
        purpose=DepositPurchase(deposit.id),
        reference=reference,
    )
    deposit.payment_id = payment.id
    db_session.commit()
    return deposit, payment


def _callbacks_for(db_session, payment):
    return (
        db_session.query(PaymentCallback)
        .filter(PaymentCallback.payment_id == payment.id)
        .order_by(PaymentCallback.received_at)
        .all()
    )


@pytest.fixture()
def reconciler(registry, notifier):
    return WebhookReconciler(registry, notifier)


def test_success_activates_plan_and_notifies(db_session, reconciler, jazzcash, agent, notifier):
    payment = _plan_payment(db_session, agent)

    result = reconciler.handle(db_session, "JAZZCASH", _jazzcash_payload(jazzcash, "JCPLAN0001"))

    assert result == CallbackResult.processed
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.completed
    assert payment.fulfilled_at is not None
    subscription = db_session.query(Subscription).filter_by(user_id=agent.id).one()
    assert subscription.tier == PlanTier.starter
    assert subscription.listings_limit == 10
    db_session.refresh(agent)
    assert agent.current_plan == PlanTier.starter
    assert notifier.names() == ["payment_success"]


def test_redelivered_success_is_duplicate_and_applied_once(
    db_session, reconciler, jazzcash, agent, notifier
):
    _plan_payment(db_session, agent)
    payload = _jazzcash_payload(jazzcash, "JCPLAN0001")
    reconciler.handle(db_session, PaymentGateway.jazzcash, payload)
    subscription = db_session.query(Subscription).filter_by(user_id=agent.id).one()
    first_end = subscription.end_date

    result = reconciler.handle(db_session, PaymentGateway.jazzcash, payload)

    assert result == CallbackResult.duplicate
    db_session.refresh(subscription)
    assert subscription.end_date == first_end
    assert notifier.names() == ["payment_success"]


def test_conflicting_outcome_is_recorded_as_anomaly(db_session, reconciler, jazzcash, agent):
    payment = _plan_payment(db_session, agent)
    reconciler.handle(db_session, "JAZZCASH", _jazzcash_payload(jazzcash, "JCPLAN0001"))

    result = reconciler.handle(
        db_session, "JAZZCASH", _jazzcash_payload(jazzcash, "JCPLAN0001", status="0")
    )

    assert result == CallbackResult.anomaly
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.completed
    results = {cb.result: cb for cb in _callbacks_for(db_session, payment)}
    assert set(results) == {CallbackResult.processed, CallbackResult.anomaly}
    assert "FAILURE" in results[CallbackResult.anomaly].detail


def test_unknown_reference_is_acknowledged_as_unmatched(db_session, reconciler, jazzcash):
    result = reconciler.handle(db_session, "JAZZCASH", _jazzcash_payload(jazzcash, "NOPE"))

    assert result == CallbackResult.unmatched
    row = (
        db_session.query(PaymentCallback)
        .filter(PaymentCallback.provider_reference == "NOPE")
        .one()
    )
    assert row.payment_id is None


def test_invalid_signature_changes_nothing(db_session, reconciler, jazzcash, agent, notifier):
    payment = _plan_payment(db_session, agent)
    payload = _jazzcash_payload(jazzcash, "JCPLAN0001")
    forged = CallbackPayload(params={**payload.params, "pp_amount": "1"})

    with pytest.raises(AuthenticationError):
        reconciler.handle(db_session, "JAZZCASH", forged)

    db_session.refresh(payment)
    assert payment.status == PaymentStatus.pending
    assert _callbacks_for(db_session, payment) == []
    assert notifier.calls == []


def test_amount_mismatch_fails_payment(db_session, reconciler, jazzcash, agent, notifier):
    payment = _plan_payment(db_session, agent)

    result = reconciler.handle(
        db_session, "JAZZCASH", _jazzcash_payload(jazzcash, "JCPLAN0001", amount=100)
    )

    assert result == CallbackResult.processed
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.failed
    assert "Amount mismatch" in payment.failure_reason
    db_session.refresh(agent)
    assert agent.current_plan == PlanTier.free
    assert notifier.names() == ["payment_failure"]


def test_declined_payment_records_gateway_reason(db_session, reconciler, jazzcash, agent, notifier):
    payment = _plan_payment(db_session, agent)

    reconciler.handle(
        db_session,
        "JAZZCASH",
        _jazzcash_payload(
            jazzcash, "JCPLAN0001", status="0", pp_status_description="Wallet blocked"
        ),
    )

    db_session.refresh(payment)
    assert payment.status == PaymentStatus.failed
    assert payment.failure_reason == "Wallet blocked"
    assert notifier.calls[0][2]["reason"] == "Wallet blocked"


def test_deposit_payment_success_records_reference_only(
    db_session, reconciler, jazzcash, agent
):
    deposit, payment = _deposit_payment(db_session, agent)

    reconciler.handle(
        db_session,
        "JAZZCASH",
        _jazzcash_payload(jazzcash, "JCDEP0001", amount=2500000),
    )

    db_session.refresh(deposit)
    assert deposit.transaction_reference == "JCDEP0001"
    assert deposit.status == SecurityDepositStatus.pending
    db_session.refresh(agent)
    assert agent.is_premium_license is False


def test_deposit_payment_failure_rejects_deposit(db_session, reconciler, jazzcash, agent):
    deposit, _ = _deposit_payment(db_session, agent)

    reconciler.handle(
        db_session,
        "JAZZCASH",
        _jazzcash_payload(jazzcash, "JCDEP0001", status="0", amount=2500000),
    )

    db_session.refresh(deposit)
    assert deposit.status == SecurityDepositStatus.rejected
    assert deposit.rejection_reason.startswith("Payment failed")


def test_notification_failure_does_not_undo_completion(db_session, registry, jazzcash, agent):
    reconciler = WebhookReconciler(registry, FakeNotificationDispatcher(fail=True))
    payment = _plan_payment(db_session, agent)

    result = reconciler.handle(db_session, "JAZZCASH", _jazzcash_payload(jazzcash, "JCPLAN0001"))

    assert result == CallbackResult.processed
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.completed


def test_card_success_webhook(db_session, reconciler, agent):
    payment = make_payment(
        db_session,
        agent,
        gateway=PaymentGateway.card,
        purpose=PlanPurchase(PlanTier.starter, BillingPeriod.monthly),
        reference="pi_abc",
    )

    result = reconciler.handle(
        db_session, "CARD", _card_payload("payment_intent.succeeded", "pi_abc")
    )

    assert result == CallbackResult.processed
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.completed


def test_unhandled_card_event_is_ignored(db_session, reconciler):
    result = reconciler.handle(db_session, "CARD", _card_payload("charge.refunded", "pi_abc"))

    assert result == CallbackResult.ignored


def test_secret_params_are_not_stored_in_audit_trail(db_session, reconciler, jazzcash, agent):
    payment = _plan_payment(db_session, agent)

    reconciler.handle(db_session, "JAZZCASH", _jazzcash_payload(jazzcash, "JCPLAN0001"))

    callback = _callbacks_for(db_session, payment)[0]
    assert "pp_password" not in callback.payload
    assert callback.payload["pp_merchant_ref"] == "JCPLAN0001"
