"""Plan listing and subscription checkout."""

import pytest

from atelier.components.integrations.stripe.service import get_stripe_service
from atelier.main import app
from atelier.platform.config import settings
from tests.factories import make_plan, make_user


class FakeStripeService:
    def __init__(self, customer_ok=True, session_ok=True):
        self.customer_ok = customer_ok
        self.session_ok = session_ok
        self.customers = []
        self.sessions = []

    def create_customer(self, email, name, user_id):
        self.customers.append(user_id)
        return {"success": self.customer_ok, "customer_id": "cus_new" if self.customer_ok else ""}

    def create_checkout_session(self, **kwargs):
        self.sessions.append(kwargs)
        if not self.session_ok:
            return {"success": False, "session_id": "", "url": ""}
        return {"success": True, "session_id": "cs_1", "url": "https://checkout.stripe.test/cs_1"}


@pytest.fixture
def stripe_enabled(monkeypatch):
    monkeypatch.setattr(settings, "MVP_DISABLE_STRIPE", False)


@pytest.fixture
def fake_stripe(client):
    service = FakeStripeService()
    app.dependency_overrides[get_stripe_service] = lambda: service
    yield service
    app.dependency_overrides.pop(get_stripe_service, None)


def _checkout(client, account_id, plan_slug="pro"):
    return client.post("/api/v1/billing/checkout", json={"accountId": account_id, "planSlug": plan_slug})


def test_plans_are_listed_cheapest_first(client, db, stripe_enabled):
    make_plan(db, slug="studio", monthly_credits=200, price_cents=4900)
    make_plan(db, slug="free", monthly_credits=0)
    make_plan(db, slug="retired", monthly_credits=10, is_active=False)

    resp = client.get("/api/v1/billing/plans")

    assert resp.status_code == 200
    assert [plan["slug"] for plan in resp.json()] == ["free", "studio"]
    assert resp.json()[1]["monthlyCredits"] == 200


def test_billing_routes_disabled_without_stripe(client, db):
    assert client.get("/api/v1/billing/plans").status_code == 503


def test_checkout_creates_customer_then_session(client, db, stripe_enabled, fake_stripe):
    user = make_user(db)
    plan = make_plan(db, slug="pro", stripe_price_id="price_pro")

    resp = _checkout(client, user.id)

    assert resp.status_code == 200, resp.text
    assert resp.json() == {"checkoutUrl": "https://checkout.stripe.test/cs_1", "sessionId": "cs_1"}
    assert fake_stripe.customers == [user.id]
    session = fake_stripe.sessions[0]
    assert session["customer_id"] == "cus_new"
    assert session["price_id"] == "price_pro"
    assert session["plan_id"] == plan.id
    db.refresh(user)
    assert user.stripe_customer_id == "cus_new"

    _checkout(client, user.id)
    assert fake_stripe.customers == [user.id]


def test_checkout_rejections(client, db, stripe_enabled, fake_stripe):
    user = make_user(db)
    make_plan(db, slug="free", monthly_credits=0)
    make_plan(db, slug="unpriced")

    assert _checkout(client, "ghost").status_code == 404
    assert _checkout(client, user.id, plan_slug="nope").status_code == 404
    assert _checkout(client, user.id, plan_slug="free").status_code == 422
    assert _checkout(client, user.id, plan_slug="unpriced").status_code == 422
    assert fake_stripe.sessions == []


def test_checkout_provider_failure_is_502(client, db, stripe_enabled, fake_stripe):
    fake_stripe.session_ok = False
    user = make_user(db)
    make_plan(db, slug="pro", stripe_price_id="price_pro")

    assert _checkout(client, user.id).status_code == 502


def test_health_reports_dependencies(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["service"] == "atelier-api"
    assert body["status"] in {"healthy", "degraded"}
    assert set(body["integrations"]) == {"stripe_configured", "image_provider_configured", "s3_configured"}
