"""Applies verified Stripe events to accounts, subscriptions and the ledger.

One event is one database transaction: state writes, the ledger command and
the processed-event marker commit together or not at all. Events whose
account, plan or subscription cannot be found yet are left unrecorded so a
later delivery can apply them.
"""

from __future__ import annotations

import logging
from dataclasses import fields
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.billing_event import ProcessedBillingEvent
from ...models.subscription import SubscriptionPlan, UserSubscription
from ...models.user import User
from ...platform.config import settings
from ...platform.request_context import bind_account_id
from ...services import credit_ledger_service as ledger
from .events import (
    OUTCOME_SKIPPED,
    REDUCERS,
    AccountState,
    BillingEventType,
    BillingState,
    BillingTransition,
    CreditCommand,
    PlanState,
    SetBalanceCommand,
    SubscriptionState,
    invoice_subscription_id,
    metadata_user_id,
    subscription_price_id,
)

logger = logging.getLogger(__name__)

STATUS_DUPLICATE = "duplicate"
STATUS_FAILED = "failed"
STATUS_UNHANDLED = "unhandled"

_ACCOUNT_FIELDS = [f.name for f in fields(AccountState) if f.name not in ("user_id", "credits")]
_SUBSCRIPTION_FIELDS = [f.name for f in fields(SubscriptionState) if f.name != "id"]


# -- Loading state ------------------------------------------------------------


def _account_state(user: Optional[User]) -> Optional[AccountState]:
    if user is None:
        return None
    return AccountState(
        user_id=user.id,
        credits=int(user.credits or 0),
        stripe_customer_id=user.stripe_customer_id,
        stripe_subscription_id=user.stripe_subscription_id,
        current_plan_id=user.current_plan_id,
        subscription_status=user.subscription_status,
        subscription_start_date=user.subscription_start_date,
        subscription_end_date=user.subscription_end_date,
        billing_cycle_anchor=user.billing_cycle_anchor,
        extra_credits_used=int(user.extra_credits_used or 0),
    )


def _subscription_state(row: Optional[UserSubscription]) -> Optional[SubscriptionState]:
    if row is None:
        return None
    return SubscriptionState(
        id=row.id,
        user_id=row.user_id,
        plan_id=row.plan_id,
        stripe_subscription_id=row.stripe_subscription_id,
        status=row.status,
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        credits_recharged_this_period=int(row.credits_recharged_this_period or 0),
        extra_credits_used_this_period=int(row.extra_credits_used_this_period or 0),
        canceled_at=row.canceled_at,
    )


def _plan_state(plan: Optional[SubscriptionPlan]) -> Optional[PlanState]:
    if plan is None:
        return None
    return PlanState(id=plan.id, slug=plan.slug, monthly_credits=int(plan.monthly_credits or 0))


def find_account(db: Session, customer_id: Optional[str], user_id: Optional[str]) -> Optional[User]:
    """Account by Stripe customer id, falling back to the user_id checkout put in metadata."""
    if customer_id:
        user = db.query(User).filter(User.stripe_customer_id == customer_id).first()
        if user is not None:
            return user
    if user_id:
        return db.get(User, user_id)
    return None


def latest_subscription(db: Session, stripe_subscription_id: Optional[str]) -> Optional[UserSubscription]:
    if not stripe_subscription_id:
        return None
    return (
        db.query(UserSubscription)
        .filter(UserSubscription.stripe_subscription_id == stripe_subscription_id)
        .order_by(UserSubscription.created_at.desc(), UserSubscription.id.desc())
        .first()
    )


def _customer_id(obj: dict) -> Optional[str]:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")
    return str(customer) if customer else None


def load_state(
    db: Session,
    event_type: BillingEventType,
    event_id: str,
    obj: dict,
    now: datetime,
) -> BillingState:
    customer_id = _customer_id(obj)
    hinted_user_id = metadata_user_id(obj)

    if event_type == BillingEventType.CHECKOUT_COMPLETED:
        user = db.get(User, hinted_user_id) if hinted_user_id else None
        user = user or find_account(db, customer_id, None)
        return BillingState(event_id=event_id, now=now, account=_account_state(user))

    if event_type == BillingEventType.SUBSCRIPTION_CREATED:
        price_id = subscription_price_id(obj)
        plan = None
        if price_id:
            plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.stripe_price_id == price_id).first()
        return BillingState(
            event_id=event_id,
            now=now,
            account=_account_state(find_account(db, customer_id, hinted_user_id)),
            subscription=_subscription_state(latest_subscription(db, obj.get("id"))),
            plan=_plan_state(plan),
        )

    if event_type in (BillingEventType.SUBSCRIPTION_UPDATED, BillingEventType.SUBSCRIPTION_DELETED):
        subscription_id = obj.get("id")
    else:
        subscription_id = invoice_subscription_id(obj)

    row = latest_subscription(db, subscription_id)
    user = db.get(User, row.user_id) if row is not None else find_account(db, customer_id, hinted_user_id)
    plan = db.get(SubscriptionPlan, row.plan_id) if row is not None else None
    free_plan = None
    if event_type == BillingEventType.SUBSCRIPTION_DELETED:
        free_plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.slug == settings.FREE_PLAN_SLUG).first()
    return BillingState(
        event_id=event_id,
        now=now,
        account=_account_state(user),
        subscription=_subscription_state(row),
        plan=_plan_state(plan),
        free_plan=_plan_state(free_plan),
    )


# -- Applying transitions -----------------------------------------------------


def apply_transition(db: Session, transition: BillingTransition) -> Optional[ledger.LedgerEntry]:
    """Write account and subscription state, then run the ledger command. Does not commit."""
    if transition.account is not None:
        user = db.get(User, transition.account.user_id)
        for name in _ACCOUNT_FIELDS:
            setattr(user, name, getattr(transition.account, name))

    if transition.subscription is not None:
        state = transition.subscription
        if state.id is None:
            db.add(UserSubscription(**{name: getattr(state, name) for name in _SUBSCRIPTION_FIELDS}))
        else:
            row = db.get(UserSubscription, state.id)
            for name in _SUBSCRIPTION_FIELDS:
                setattr(row, name, getattr(state, name))
    db.flush()

    command = transition.ledger
    if command is None:
        return None
    user_id = transition.account.user_id if transition.account else transition.subscription.user_id
    if isinstance(command, CreditCommand):
        return ledger.credit(
            db,
            user_id,
            command.amount,
            command.tx_type,
            command.metadata,
            description=command.description,
            external_ref=command.external_ref,
            commit=False,
        )
    if isinstance(command, SetBalanceCommand):
        return ledger.set_absolute(
            db,
            user_id,
            command.balance,
            command.tx_type,
            command.metadata,
            description=command.description,
            external_ref=command.external_ref,
            commit=False,
        )
    raise TypeError(f"Unknown ledger command {command!r}")


def _already_processed(db: Session, event_id: str) -> bool:
    return (
        db.execute(select(ProcessedBillingEvent.id).where(ProcessedBillingEvent.event_id == event_id)).first()
        is not None
    )


def process_billing_event(db: Session, event: dict[str, Any], *, now: Optional[datetime] = None) -> str:
    """Process one verified event. Returns the status reported back to Stripe."""
    event_id = str(event.get("id"))
    raw_type = str(event.get("type"))
    try:
        event_type = BillingEventType(raw_type)
    except ValueError:
        logger.info("Unhandled billing event type=%s event_id=%s", raw_type, event_id)
        return STATUS_UNHANDLED

    if _already_processed(db, event_id):
        logger.info("Duplicate billing event type=%s event_id=%s", raw_type, event_id)
        return STATUS_DUPLICATE

    obj = (event.get("data") or {}).get("object") or {}
    now = now or datetime.now(timezone.utc)
    try:
        state = load_state(db, event_type, event_id, obj, now)
        if state.account is not None:
            bind_account_id(state.account.user_id)
        transition = REDUCERS[event_type](state, obj)
        if transition.outcome == OUTCOME_SKIPPED:
            db.rollback()
            logger.warning(
                "Skipped billing event type=%s event_id=%s reason=%s",
                raw_type,
                event_id,
                transition.reason,
            )
            return OUTCOME_SKIPPED

        entry = apply_transition(db, transition)
        db.add(ProcessedBillingEvent(event_id=event_id, event_type=raw_type, outcome=transition.outcome))
        db.commit()
    except IntegrityError:
        db.rollback()
        if _already_processed(db, event_id):
            logger.info("Billing event processed concurrently type=%s event_id=%s", raw_type, event_id)
            return STATUS_DUPLICATE
        logger.exception("Billing event failed type=%s event_id=%s", raw_type, event_id)
        return STATUS_FAILED
    except Exception:
        db.rollback()
        logger.exception("Billing event failed type=%s event_id=%s", raw_type, event_id)
        return STATUS_FAILED

    for note in transition.notes:
        logger.warning("Billing event %s: %s", event_id, note)
    logger.info(
        "Billing event processed type=%s event_id=%s outcome=%s reason=%s ledger_tx=%s",
        raw_type,
        event_id,
        transition.outcome,
        transition.reason,
        entry.transaction_id if entry else None,
    )
    return transition.outcome
