"""Factory helpers and fakes shared by the test modules."""

import base64
import hashlib
import hmac
import json
import time
import uuid

from atelier.components.integrations.image_provider.service import GeneratedImage
from atelier.models.credit_pricing import CreditPricing
from atelier.models.credit_transaction import CreditTransactionType
from atelier.models.generation import Generation, GenerationResult, GenerationStatus
from atelier.models.subscription import SubscriptionPlan
from atelier.models.user import User
from atelier.services import credit_ledger_service as ledger
from atelier.services.storage_service import StoredObject

WEBHOOK_SECRET = "whsec_test_secret"
CLEAN_BYTES = b"\x89PNG-clean-image"

_counter = 0


def _unique_id() -> str:
    global _counter
    _counter += 1
    return f"{_counter}-{uuid.uuid4().hex[:8]}"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


def make_user(db, credits=0, **fields) -> User:
    """Create an account; starting credits go through the ledger so replay matches."""
    user = User(email=fields.pop("email", f"user-{_unique_id()}@test.com"), **fields)
    db.add(user)
    db.commit()
    if credits:
        ledger.credit(db, user.id, credits, CreditTransactionType.BONUS, {"reason": "test_seed"})
    db.refresh(user)
    return user


def make_plan(db, slug="pro", monthly_credits=50, stripe_price_id=None, **fields) -> SubscriptionPlan:
    plan = SubscriptionPlan(
        slug=slug,
        name=fields.pop("name", slug.title()),
        monthly_credits=monthly_credits,
        price_cents=fields.pop("price_cents", 1900 if monthly_credits else 0),
        stripe_price_id=stripe_price_id,
        **fields,
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


def set_price(db, action_type: str, credits_required: int, is_active=True) -> CreditPricing:
    row = CreditPricing(action_type=action_type, credits_required=credits_required, is_active=is_active)
    db.add(row)
    db.commit()
    return row


def make_generation(db, user, status=GenerationStatus.PENDING.value, input_data=None, **fields) -> Generation:
    generation = Generation(
        user_id=user.id,
        tool_id=fields.pop("tool_id", "product-shot"),
        status=status,
        input_data={"prompt": "a red sneaker on white"} if input_data is None else input_data,
        **fields,
    )
    db.add(generation)
    db.commit()
    db.refresh(generation)
    return generation


def make_result(db, user, clean_bytes=CLEAN_BYTES, input_data=None, **fields) -> GenerationResult:
    """A completed generation with one watermarked result holding a clean payload."""
    generation = make_generation(db, user, status=GenerationStatus.COMPLETED.value, input_data=input_data)
    result_id = str(uuid.uuid4())
    result = GenerationResult(
        id=result_id,
        generation_id=generation.id,
        image_path=f"{user.id}/{generation.id}/{result_id}.png",
        image_url=f"https://cdn.test/generated-images/{user.id}/{generation.id}/{result_id}.png",
        mime_type="image/png",
        has_watermark=True,
        clean_image_data=base64.b64encode(clean_bytes).decode("ascii") if clean_bytes is not None else None,
        clean_mime_type="image/png",
        **fields,
    )
    db.add(result)
    db.commit()
    db.refresh(result)
    return result


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeStorage:
    """In-memory object storage that records every upload.

    ``on_upload`` runs after each recorded upload, which lets a test act as a
    competing worker between the upload and the caller's next write.
    """

    def __init__(self, fail_with=None, on_upload=None):
        self.uploads = []
        self.fail_with = fail_with
        self.on_upload = on_upload

    def public_url(self, bucket, path):
        return f"https://cdn.test/{bucket}/{path}"

    def upload(self, bucket, path, data, content_type):
        if self.fail_with is not None:
            raise self.fail_with
        self.uploads.append((bucket, path, data, content_type))
        if self.on_upload is not None:
            self.on_upload()
        return StoredObject(bucket=bucket, path=path, url=self.public_url(bucket, path))


class FakeProvider:
    """Image provider double; returns ``image`` or raises ``error``."""

    def __init__(self, data=b"generated-bytes", mime_type="image/png", error=None):
        self.data = data
        self.mime_type = mime_type
        self.error = error
        self.requests = []

    def generate(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return GeneratedImage(data=self.data, mime_type=self.mime_type)


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------


def stripe_event(event_type: str, obj: dict, event_id: str | None = None) -> dict:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header value for ``payload``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def post_stripe_event(client, event: dict, secret: str = WEBHOOK_SECRET):
    payload = json.dumps(event)
    return client.post(
        "/api/v1/billing/webhook",
        content=payload,
        headers={"Stripe-Signature": stripe_signature(payload, secret), "Content-Type": "application/json"},
    )
