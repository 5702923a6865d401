"""
Stripe service for subscription checkout and webhook verification.

Handles customer creation, Checkout Sessions in subscription mode and the
signature check that gates every webhook delivery.
"""

import json
import logging

import stripe

from ....platform.config import settings
from ....platform.errors import FatalError

logger = logging.getLogger(__name__)


class StripeService:
    """Service for managing customers and subscription checkout through Stripe."""

    def __init__(self, api_key: str):
        """
        Initialise the Stripe service.

        Args:
            api_key: Stripe secret API key.
        """
        stripe.api_key = api_key
        logger.info("StripeService initialised")

    def create_customer(self, email: str, name: str | None, user_id: str) -> dict:
        """
        Create a new Stripe customer linked to an account.

        Args:
            email: Customer email address.
            name: Customer display name.
            user_id: Account id stored in customer metadata.

        Returns:
            Dict with keys: success, customer_id.
        """
        try:
            logger.info("Creating Stripe customer (user_id=%s)", user_id)

            customer = stripe.Customer.create(
                email=email,
                name=name or None,
                metadata={"user_id": user_id},
            )

            logger.info(
                "Stripe customer created successfully (customer_id=%s)", customer.id
            )

            return {
                "success": True,
                "customer_id": customer.id,
            }
        except stripe.StripeError as e:
            logger.error("Stripe error creating customer: %s", str(e))
            return {
                "success": False,
                "customer_id": "",
            }

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        user_id: str,
        plan_id: int,
        plan_slug: str,
        success_url: str,
        cancel_url: str,
    ) -> dict:
        """
        Create a subscription-mode Checkout Session.

        The account and plan are attached as metadata to both the session and
        the subscription it creates, so later webhooks can find the account
        even before the customer id is stored.

        Returns:
            Dict with keys: success, session_id, url.
        """
        metadata = {"user_id": user_id, "plan_id": str(plan_id), "plan_slug": plan_slug}
        try:
            logger.info(
                "Creating checkout session (customer_id=%s, price_id=%s)",
                customer_id,
                price_id,
            )

            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )

            logger.info("Checkout session created successfully (id=%s)", session.id)

            return {
                "success": True,
                "session_id": session.id,
                "url": session.url,
            }
        except stripe.StripeError as e:
            logger.error("Stripe error creating checkout session: %s", str(e))
            return {
                "success": False,
                "session_id": "",
                "url": "",
            }


def get_stripe_service() -> StripeService:
    return StripeService(settings.STRIPE_API_KEY)


def verify_webhook(payload: bytes, sig_header: str, secret: str, tolerance: int | None = None) -> dict:
    """
    Verify a webhook signature and decode the event.

    Raises:
        FatalError: the signature is missing, stale or wrong, or the body is not a JSON event.
    """
    if not sig_header:
        raise FatalError("Missing Stripe-Signature header")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FatalError("Webhook payload is not UTF-8") from exc
    try:
        stripe.WebhookSignature.verify_header(
            body,
            sig_header,
            secret,
            tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    except stripe.SignatureVerificationError as exc:
        raise FatalError(f"Invalid webhook signature: {exc}") from exc

    try:
        event = json.loads(body)
    except ValueError as exc:
        raise FatalError("Webhook payload is not valid JSON") from exc
    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise FatalError("Webhook payload is not a Stripe event")
    return event
