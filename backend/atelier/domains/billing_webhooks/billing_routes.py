"""Billing: subscription plans and Stripe checkout."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...components.integrations.stripe.service import StripeService, get_stripe_service
from ...models.subscription import SubscriptionPlan
from ...models.user import User
from ...platform.config import settings
from ...platform.database import get_db
from ...platform.errors import InvalidRequestError, ResourceNotFoundError
from ...platform.request_context import bind_account_id
from ...schemas.billing import CheckoutRequest, CheckoutResponse, PlanView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def _require_stripe() -> None:
    if settings.MVP_DISABLE_STRIPE:
        raise HTTPException(status_code=503, detail="Stripe integration is disabled")


@router.get("/plans", response_model=list[PlanView])
def list_plans(db: Session = Depends(get_db)):
    _require_stripe()
    plans = (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.is_active.is_(True))
        .order_by(SubscriptionPlan.price_cents.asc(), SubscriptionPlan.id.asc())
        .all()
    )
    return [PlanView.model_validate(plan) for plan in plans]


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(
    data: CheckoutRequest,
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """Start a subscription checkout for a paid plan."""
    _require_stripe()
    bind_account_id(data.account_id)
    user = db.get(User, data.account_id)
    if user is None:
        raise ResourceNotFoundError("Account not found.")
    plan = (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.slug == data.plan_slug, SubscriptionPlan.is_active.is_(True))
        .first()
    )
    if plan is None:
        raise ResourceNotFoundError("Plan not found.")
    if plan.slug == settings.FREE_PLAN_SLUG:
        raise InvalidRequestError("The free plan does not need a checkout.")
    if not plan.stripe_price_id:
        raise InvalidRequestError("This plan is not available for purchase yet.")

    if not user.stripe_customer_id:
        created = stripe_service.create_customer(user.email, user.full_name, user.id)
        if not created["success"]:
            raise HTTPException(status_code=502, detail="Could not create the billing customer")
        user.stripe_customer_id = created["customer_id"]
        db.commit()

    frontend = settings.FRONTEND_URL.rstrip("/")
    session = stripe_service.create_checkout_session(
        customer_id=user.stripe_customer_id,
        price_id=plan.stripe_price_id,
        user_id=user.id,
        plan_id=plan.id,
        plan_slug=plan.slug,
        success_url=data.success_url or f"{frontend}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=data.cancel_url or f"{frontend}/billing",
    )
    if not session["success"]:
        raise HTTPException(status_code=502, detail="Could not start checkout")
    logger.info("Checkout started user_id=%s plan=%s session_id=%s", user.id, plan.slug, session["session_id"])
    return CheckoutResponse(checkout_url=session["url"], session_id=session["session_id"])
