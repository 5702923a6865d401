"""Stripe webhook endpoint and billing event processing against the database."""

import json
import time
from datetime import datetime

import pytest

from atelier.components.billing.processor import process_billing_event
from atelier.models.billing_event import ProcessedBillingEvent
from atelier.models.credit_transaction import CreditTransaction
from atelier.models.subscription import UserSubscription
from atelier.models.user import User
from atelier.platform.config import settings
from atelier.services import credit_ledger_service as ledger
from tests.factories import (
    make_plan,
    make_user,
    post_stripe_event,
    stripe_event,
    stripe_signature,
)

PERIOD_START = 1767225600  # 2026-01-01
PERIOD_END = 1769904000  # 2026-02-01


@pytest.fixture
def stripe_enabled(monkeypatch):
    monkeypatch.setattr(settings, "MVP_DISABLE_STRIPE", False)


@pytest.fixture
def pro_plan(db):
    return make_plan(db, slug="pro", monthly_credits=50, stripe_price_id="price_pro")


@pytest.fixture
def free_plan(db):
    return make_plan(db, slug="free", monthly_credits=0)


def _subscription(user_id, sub_id="sub_1", customer="cus_1", status="active", **extra):
    obj = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
        "items": {"data": [{"price": {"id": "price_pro"}}]},
        "metadata": {"user_id": user_id},
    }
    obj.update(extra)
    return obj


def _cycle_invoice(invoice_id="in_1", sub_id="sub_1", customer="cus_1", billing_reason="subscription_cycle"):
    return {
        "id": invoice_id,
        "object": "invoice",
        "customer": customer,
        "subscription": sub_id,
        "billing_reason": billing_reason,
    }


def _subscribe(client, user, sub_id="sub_1"):
    resp = post_stripe_event(client, stripe_event("customer.subscription.created", _subscription(user.id, sub_id)))
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "applied"
    return resp


def _outcomes(db):
    return {row.event_id: row.outcome for row in db.query(ProcessedBillingEvent).all()}


# ---------------------------------------------------------------------------
# Signature and gating
# ---------------------------------------------------------------------------


def test_bad_signature_is_400_without_mutation(client, db, stripe_enabled, pro_plan):
    user = make_user(db, credits=3)
    event = stripe_event("customer.subscription.created", _subscription(user.id))

    wrong_secret = post_stripe_event(client, event, secret="whsec_wrong")
    payload = json.dumps(event)
    stale = client.post(
        "/api/v1/billing/webhook",
        content=payload,
        headers={"Stripe-Signature": stripe_signature(payload, timestamp=int(time.time()) - 3600)},
    )
    missing = client.post("/api/v1/billing/webhook", content=payload)

    assert wrong_secret.status_code == 400
    assert stale.status_code == 400
    assert missing.status_code == 400
    assert db.query(ProcessedBillingEvent).count() == 0
    assert db.query(UserSubscription).count() == 0
    assert ledger.get_balance(db, user.id) == 3


def test_signed_non_event_payload_is_400(client, db, stripe_enabled):
    payload = json.dumps({"hello": "world"})
    resp = client.post("/api/v1/billing/webhook", content=payload, headers={"Stripe-Signature": stripe_signature(payload)})
    assert resp.status_code == 400


def test_webhook_disabled_is_503(client, db):
    event = stripe_event("invoice.payment_failed", _cycle_invoice())
    assert post_stripe_event(client, event).status_code == 503


def test_unknown_event_type_is_acknowledged(client, db, stripe_enabled):
    resp = post_stripe_event(client, stripe_event("charge.refunded", {"id": "ch_1"}))
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "status": "unhandled"}


# ---------------------------------------------------------------------------
# Subscription lifecycle
# ---------------------------------------------------------------------------


def test_checkout_completed_attaches_customer(client, db, stripe_enabled):
    user = make_user(db)
    event = stripe_event(
        "checkout.session.completed",
        {"id": "cs_1", "customer": "cus_1", "subscription": "sub_1", "metadata": {"user_id": user.id}},
    )

    resp = post_stripe_event(client, event)

    assert resp.json()["status"] == "applied"
    db.refresh(user)
    assert user.stripe_customer_id == "cus_1"
    assert user.stripe_subscription_id == "sub_1"


def test_subscription_created_tops_up_once(client, db, stripe_enabled, pro_plan):
    user = make_user(db, credits=7)
    event = stripe_event("customer.subscription.created", _subscription(user.id))

    first = post_stripe_event(client, event)
    same_event = post_stripe_event(client, event)
    new_event_id = post_stripe_event(
        client, stripe_event("customer.subscription.created", _subscription(user.id))
    )

    assert first.json()["status"] == "applied"
    assert same_event.json()["status"] == "duplicate"
    assert new_event_id.json()["status"] == "ignored"
    assert ledger.get_balance(db, user.id) == 57
    assert db.query(UserSubscription).count() == 1

    db.refresh(user)
    assert user.current_plan_id == pro_plan.id
    assert user.subscription_status == "active"
    assert user.stripe_customer_id == "cus_1"
    assert user.stripe_subscription_id == "sub_1"
    top_up = db.query(CreditTransaction).filter(CreditTransaction.type == "purchase").one()
    assert top_up.amount == 50
    assert top_up.external_ref == "stripe:subscription_created:sub_1"


def test_subscription_for_unknown_account_is_skipped_and_not_recorded(client, db, stripe_enabled, pro_plan):
    event = stripe_event("customer.subscription.created", _subscription("ghost", customer="cus_ghost"))

    resp = post_stripe_event(client, event)

    assert resp.status_code == 200
    assert resp.json()["status"] == "skipped"
    assert db.query(ProcessedBillingEvent).count() == 0


def test_skipped_event_applies_on_redelivery(client, db, stripe_enabled, pro_plan):
    user = make_user(db)
    update = stripe_event("customer.subscription.updated", _subscription(user.id, status="past_due"))

    assert post_stripe_event(client, update).json()["status"] == "skipped"
    _subscribe(client, user)
    assert post_stripe_event(client, update).json()["status"] == "applied"

    subscription = db.query(UserSubscription).one()
    assert subscription.status == "past_due"
    assert _outcomes(db)[update["id"]] == "applied"


def test_subscription_updated_changes_status_and_period(client, db, stripe_enabled, pro_plan):
    user = make_user(db)
    _subscribe(client, user)
    renewed = _subscription(
        user.id, status="active", current_period_start=PERIOD_END, current_period_end=PERIOD_END + 2419200
    )

    post_stripe_event(client, stripe_event("customer.subscription.updated", renewed))

    subscription = db.query(UserSubscription).one()
    assert subscription.current_period_start.replace(tzinfo=None) == datetime(2026, 2, 1)
    db.refresh(user)
    assert user.subscription_status == "active"
    assert user.subscription_end_date is not None


def test_subscription_deleted_demotes_to_free_plan(client, db, stripe_enabled, pro_plan, free_plan):
    user = make_user(db)
    _subscribe(client, user)

    resp = post_stripe_event(client, stripe_event("customer.subscription.deleted", _subscription(user.id, status="canceled")))

    assert resp.json()["status"] == "applied"
    db.refresh(user)
    assert user.current_plan_id == free_plan.id
    assert user.subscription_status == "canceled"
    assert user.stripe_subscription_id is None
    subscription = db.query(UserSubscription).one()
    assert subscription.status == "canceled"
    assert subscription.canceled_at is not None
    assert ledger.get_balance(db, user.id) == 50


def test_payment_failed_marks_past_due_without_credit_change(client, db, stripe_enabled, pro_plan):
    user = make_user(db)
    _subscribe(client, user)

    post_stripe_event(client, stripe_event("invoice.payment_failed", _cycle_invoice()))

    db.refresh(user)
    assert user.subscription_status == "past_due"
    assert db.query(UserSubscription).one().status == "past_due"
    assert ledger.get_balance(db, user.id) == 50


def test_out_of_order_subscription_found_by_metadata(client, db, stripe_enabled, pro_plan):
    user = make_user(db)

    _subscribe(client, user)
    checkout = stripe_event(
        "checkout.session.completed",
        {"id": "cs_1", "customer": "cus_1", "subscription": "sub_1", "metadata": {"user_id": user.id}},
    )
    post_stripe_event(client, checkout)

    db.refresh(user)
    assert user.stripe_customer_id == "cus_1"
    assert user.current_plan_id == pro_plan.id
    assert ledger.get_balance(db, user.id) == 50


# ---------------------------------------------------------------------------
# Cycle recharge
# ---------------------------------------------------------------------------


def test_cycle_invoice_sets_balance_to_allotment(client, db, stripe_enabled, pro_plan):
    user = make_user(db)
    _subscribe(client, user)
    ledger.credit(db, user.id, 13, "bonus", {"reason": "promo"})
    subscription = db.query(UserSubscription).one()
    subscription.extra_credits_used_this_period = 4
    db.commit()

    resp = post_stripe_event(client, stripe_event("invoice.payment_succeeded", _cycle_invoice()))

    assert resp.json()["status"] == "applied"
    assert ledger.get_balance(db, user.id) == 50
    db.refresh(subscription)
    assert subscription.extra_credits_used_this_period == 0
    assert subscription.credits_recharged_this_period == 50
    recharge = db.query(CreditTransaction).filter(CreditTransaction.type == "subscription_recharge").one()
    assert recharge.amount == -13
    assert recharge.entry_metadata["previous_balance"] == 63
    assert ledger.replay_balance(db, user.id) == 50


def test_cycle_invoice_redelivery_is_idempotent(client, db, stripe_enabled, pro_plan):
    user = make_user(db)
    _subscribe(client, user)
    event = stripe_event("invoice.payment_succeeded", _cycle_invoice())

    post_stripe_event(client, event)
    again = post_stripe_event(client, event)
    ledger.debit(db, user.id, 5, "generation")
    fresh_id = post_stripe_event(client, stripe_event("invoice.payment_succeeded", _cycle_invoice()))

    assert again.json()["status"] == "duplicate"
    assert fresh_id.json()["status"] == "applied"
    # Same invoice under a new event id does not recharge a second time.
    assert ledger.get_balance(db, user.id) == 45
    assert db.query(CreditTransaction).filter(CreditTransaction.type == "subscription_recharge").count() == 1


def test_non_cycle_invoice_is_ignored(client, db, stripe_enabled, pro_plan):
    user = make_user(db)
    _subscribe(client, user)
    event = stripe_event("invoice.payment_succeeded", _cycle_invoice(billing_reason="subscription_create"))

    resp = post_stripe_event(client, event)

    assert resp.json()["status"] == "ignored"
    assert _outcomes(db)[event["id"]] == "ignored"
    assert ledger.get_balance(db, user.id) == 50


def test_newer_invoice_shape_is_accepted(client, db, stripe_enabled, pro_plan):
    user = make_user(db)
    _subscribe(client, user)
    invoice = {
        "id": "in_2",
        "object": "invoice",
        "customer": "cus_1",
        "billing_reason": "subscription_cycle",
        "parent": {"subscription_details": {"subscription": "sub_1", "metadata": {"user_id": user.id}}},
    }
    ledger.debit(db, user.id, 20, "generation")

    resp = post_stripe_event(client, stripe_event("invoice.payment_succeeded", invoice))

    assert resp.json()["status"] == "applied"
    assert ledger.get_balance(db, user.id) == 50


def test_processing_failure_rolls_back_and_is_not_recorded(db, pro_plan, monkeypatch):
    from atelier.components.billing import processor

    user = make_user(db)

    def broken_credit(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(processor.ledger, "credit", broken_credit)
    event = stripe_event("customer.subscription.created", _subscription(user.id))

    assert process_billing_event(db, event) == "failed"
    assert db.query(UserSubscription).count() == 0
    assert db.query(ProcessedBillingEvent).count() == 0
    assert db.get(User, user.id).current_plan_id is None
