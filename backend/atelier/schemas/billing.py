from typing import Optional

from pydantic import Field

from .base import CamelModel


class PlanView(CamelModel):
    id: int
    slug: str
    name: str
    monthly_credits: int
    price_cents: int
    billing_interval: str


class CheckoutRequest(CamelModel):
    account_id: str = Field(min_length=1)
    plan_slug: str = Field(min_length=1)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutResponse(CamelModel):
    checkout_url: str
    session_id: str


class WebhookAck(CamelModel):
    received: bool = True
    status: str
