"""Billing events as pure reducers.

Each handled Stripe event type maps to a function
``(BillingState, event object) -> BillingTransition``. Reducers read only
their arguments and never touch the database; ``processor.apply_transition``
writes the resulting state and runs the ledger command.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from ...models.credit_transaction import CreditTransactionType

SUBSCRIPTION_CYCLE = "subscription_cycle"
STATUS_CANCELED = "canceled"
STATUS_PAST_DUE = "past_due"

OUTCOME_APPLIED = "applied"
OUTCOME_IGNORED = "ignored"
OUTCOME_SKIPPED = "skipped"


class BillingEventType(str, enum.Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


@dataclass(frozen=True)
class AccountState:
    user_id: str
    credits: int = 0
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    current_plan_id: Optional[int] = None
    subscription_status: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    billing_cycle_anchor: Optional[datetime] = None
    extra_credits_used: int = 0


@dataclass(frozen=True)
class SubscriptionState:
    user_id: str
    plan_id: int
    stripe_subscription_id: str
    status: str
    id: Optional[int] = None  # None until inserted
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    credits_recharged_this_period: int = 0
    extra_credits_used_this_period: int = 0
    canceled_at: Optional[datetime] = None


@dataclass(frozen=True)
class PlanState:
    id: int
    slug: str
    monthly_credits: int


@dataclass(frozen=True)
class BillingState:
    event_id: str
    now: datetime
    account: Optional[AccountState] = None
    subscription: Optional[SubscriptionState] = None
    plan: Optional[PlanState] = None
    free_plan: Optional[PlanState] = None


@dataclass(frozen=True)
class CreditCommand:
    """Add ``amount`` credits."""

    amount: int
    tx_type: CreditTransactionType
    metadata: dict[str, Any]
    external_ref: str
    description: str


@dataclass(frozen=True)
class SetBalanceCommand:
    """Replace the balance with ``balance``."""

    balance: int
    tx_type: CreditTransactionType
    metadata: dict[str, Any]
    external_ref: str
    description: str


LedgerCommand = Union[CreditCommand, SetBalanceCommand]


@dataclass(frozen=True)
class BillingTransition:
    outcome: str = OUTCOME_APPLIED
    account: Optional[AccountState] = None
    subscription: Optional[SubscriptionState] = None
    ledger: Optional[LedgerCommand] = None
    reason: Optional[str] = None
    notes: list[str] = field(default_factory=list)

    @classmethod
    def skip(cls, reason: str) -> "BillingTransition":
        return cls(outcome=OUTCOME_SKIPPED, reason=reason)

    @classmethod
    def ignore(cls, reason: str) -> "BillingTransition":
        return cls(outcome=OUTCOME_IGNORED, reason=reason)


# -- Payload helpers ------------------------------------------------------------


def _id_of(value: Any) -> Optional[str]:
    """Stripe expands some references into objects; accept either form."""
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _from_epoch(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(subscription: dict) -> dict:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items and isinstance(items[0], dict) else {}


def subscription_period(subscription: dict) -> tuple[Optional[datetime], Optional[datetime]]:
    """Period bounds from the subscription, or from its first item on newer API versions."""
    item = _first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return _from_epoch(start), _from_epoch(end)


def subscription_price_id(subscription: dict) -> Optional[str]:
    price = _first_item(subscription).get("price") or {}
    if isinstance(price, dict):
        return price.get("id")
    return _id_of(price)


def invoice_subscription_id(invoice: dict) -> Optional[str]:
    direct = _id_of(invoice.get("subscription"))
    if direct:
        return direct
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _id_of(details.get("subscription"))


def metadata_user_id(obj: dict) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    user_id = metadata.get("user_id")
    if user_id:
        return str(user_id)
    details = (obj.get("parent") or {}).get("subscription_details") or {}
    user_id = (details.get("metadata") or {}).get("user_id")
    return str(user_id) if user_id else None


# -- Reducers -------------------------------------------------------------------


def on_checkout_completed(state: BillingState, session: dict) -> BillingTransition:
    customer_id = _id_of(session.get("customer"))
    if not customer_id:
        return BillingTransition.ignore("checkout session has no customer")
    if state.account is None:
        return BillingTransition.skip("account not found for checkout session")
    account = replace(
        state.account,
        stripe_customer_id=customer_id,
        stripe_subscription_id=_id_of(session.get("subscription")) or state.account.stripe_subscription_id,
    )
    return BillingTransition(account=account)


def on_subscription_created(state: BillingState, subscription: dict) -> BillingTransition:
    if state.account is None:
        return BillingTransition.skip("account not found for subscription")
    if state.plan is None:
        return BillingTransition.skip("plan not found for subscription price")
    if state.subscription is not None:
        return BillingTransition.ignore("subscription already recorded")

    subscription_id = str(subscription["id"])
    status = subscription.get("status") or "active"
    start, end = subscription_period(subscription)
    plan = state.plan

    new_subscription = SubscriptionState(
        user_id=state.account.user_id,
        plan_id=plan.id,
        stripe_subscription_id=subscription_id,
        status=status,
        current_period_start=start,
        current_period_end=end,
        credits_recharged_this_period=plan.monthly_credits,
        extra_credits_used_this_period=0,
    )
    account = replace(
        state.account,
        stripe_customer_id=state.account.stripe_customer_id or _id_of(subscription.get("customer")),
        stripe_subscription_id=subscription_id,
        current_plan_id=plan.id,
        subscription_status=status,
        subscription_start_date=start,
        subscription_end_date=end,
        billing_cycle_anchor=start,
    )
    command = None
    if plan.monthly_credits > 0:
        # Additive, unlike the absolute cycle recharge; see DESIGN.md.
        command = CreditCommand(
            amount=plan.monthly_credits,
            tx_type=CreditTransactionType.PURCHASE,
            metadata={
                "plan_slug": plan.slug,
                "stripe_subscription_id": subscription_id,
                "stripe_event_id": state.event_id,
                "source": "subscription_created",
            },
            external_ref=f"stripe:subscription_created:{subscription_id}",
            description=f"Subscription started: {plan.slug}",
        )
    return BillingTransition(account=account, subscription=new_subscription, ledger=command)


def on_subscription_updated(state: BillingState, subscription: dict) -> BillingTransition:
    if state.subscription is None:
        return BillingTransition.skip("subscription record not found")
    start, end = subscription_period(subscription)
    status = subscription.get("status") or state.subscription.status
    updated = replace(
        state.subscription,
        status=status,
        current_period_start=start or state.subscription.current_period_start,
        current_period_end=end or state.subscription.current_period_end,
    )
    account = None
    if state.account is not None:
        account = replace(
            state.account,
            subscription_status=status,
            subscription_end_date=end or state.account.subscription_end_date,
        )
    return BillingTransition(account=account, subscription=updated)


def on_subscription_deleted(state: BillingState, subscription: dict) -> BillingTransition:
    if state.subscription is None:
        return BillingTransition.skip("subscription record not found")
    updated = replace(
        state.subscription,
        status=STATUS_CANCELED,
        canceled_at=state.subscription.canceled_at or state.now,
    )
    account = None
    notes = []
    if state.account is not None:
        if state.free_plan is None:
            notes.append("free plan missing; account left without a plan")
        account = replace(
            state.account,
            current_plan_id=state.free_plan.id if state.free_plan else None,
            subscription_status=STATUS_CANCELED,
            stripe_subscription_id=None,
        )
    return BillingTransition(account=account, subscription=updated, notes=notes)


def on_invoice_payment_succeeded(state: BillingState, invoice: dict) -> BillingTransition:
    subscription_id = invoice_subscription_id(invoice)
    if not subscription_id:
        return BillingTransition.ignore("invoice has no subscription")
    if invoice.get("billing_reason") != SUBSCRIPTION_CYCLE:
        return BillingTransition.ignore(f"billing_reason={invoice.get('billing_reason')}")
    invoice_id = invoice.get("id")
    if not invoice_id:
        return BillingTransition.ignore("invoice has no id")
    if state.subscription is None:
        return BillingTransition.skip("subscription record not found")
    if state.account is None:
        return BillingTransition.skip("account not found for subscription")
    if state.plan is None:
        return BillingTransition.skip("plan not found for subscription")

    plan = state.plan
    updated = replace(
        state.subscription,
        credits_recharged_this_period=plan.monthly_credits,
        extra_credits_used_this_period=0,
    )
    account = replace(state.account, extra_credits_used=0)
    command = SetBalanceCommand(
        balance=plan.monthly_credits,
        tx_type=CreditTransactionType.SUBSCRIPTION_RECHARGE,
        metadata={
            "plan_slug": plan.slug,
            "stripe_subscription_id": subscription_id,
            "stripe_invoice_id": invoice_id,
            "previous_balance": state.account.credits,
        },
        external_ref=f"stripe:invoice:{invoice_id}:recharge",
        description=f"Monthly recharge: {plan.slug}",
    )
    return BillingTransition(account=account, subscription=updated, ledger=command)


def on_invoice_payment_failed(state: BillingState, invoice: dict) -> BillingTransition:
    if not invoice_subscription_id(invoice):
        return BillingTransition.ignore("invoice has no subscription")
    if state.subscription is None:
        return BillingTransition.skip("subscription record not found")
    updated = replace(state.subscription, status=STATUS_PAST_DUE)
    account = None
    if state.account is not None:
        account = replace(state.account, subscription_status=STATUS_PAST_DUE)
    return BillingTransition(account=account, subscription=updated)


REDUCERS: dict[BillingEventType, Callable[[BillingState, dict], BillingTransition]] = {
    BillingEventType.CHECKOUT_COMPLETED: on_checkout_completed,
    BillingEventType.SUBSCRIPTION_CREATED: on_subscription_created,
    BillingEventType.SUBSCRIPTION_UPDATED: on_subscription_updated,
    BillingEventType.SUBSCRIPTION_DELETED: on_subscription_deleted,
    BillingEventType.INVOICE_PAYMENT_SUCCEEDED: on_invoice_payment_succeeded,
    BillingEventType.INVOICE_PAYMENT_FAILED: on_invoice_payment_failed,
}
