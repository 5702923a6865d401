# Stripe webhook endpoint: verify, then hand the event to the billing processor.
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...components.billing.processor import process_billing_event
from ...components.integrations.stripe.service import verify_webhook
from ...platform.config import settings
from ...platform.database import get_db
from ...platform.errors import FatalError
from ...schemas.billing import WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Webhooks"])


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle incoming Stripe webhooks. Anything correctly signed is acknowledged with 200."""
    if settings.MVP_DISABLE_STRIPE:
        raise HTTPException(status_code=503, detail="Stripe integration is disabled")
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status_code=503, detail="Stripe webhook secret is not configured")
    payload = await request.body()
    sig_header = request.headers.get("Stripe-Signature", "")

    try:
        event = verify_webhook(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except FatalError as exc:
        logger.warning("Rejected Stripe webhook: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc))

    status = process_billing_event(db, event)
    return WebhookAck(received=True, status=status)
