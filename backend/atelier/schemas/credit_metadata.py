"""Typed metadata carried by each credit transaction.

Every transaction type has exactly one metadata shape, discriminated by
``kind`` (always equal to the transaction type). Unknown kinds and unknown
fields are rejected rather than stored as free-form JSON.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import ConfigDict, Field, TypeAdapter, ValidationError

from ..models.credit_transaction import CreditTransactionType
from ..platform.errors import InvalidRequestError
from .base import CamelModel


class _Metadata(CamelModel):
    model_config = ConfigDict(extra="forbid")


class GenerationMetadata(_Metadata):
    kind: Literal["generation"] = "generation"
    tool_id: Optional[str] = None
    generation_id: Optional[str] = None
    breakdown: dict[str, int] = Field(default_factory=dict)


class ImprovementMetadata(_Metadata):
    kind: Literal["improvement"] = "improvement"
    original_result_id: str
    improvement_text: str
    generation_id: Optional[str] = None


class RefundMetadata(_Metadata):
    kind: Literal["refund"] = "refund"
    original_transaction_id: int
    reason: Optional[str] = None


class PurchaseMetadata(_Metadata):
    kind: Literal["purchase"] = "purchase"
    plan_slug: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_event_id: Optional[str] = None
    source: str = "stripe"


class SubscriptionRechargeMetadata(_Metadata):
    kind: Literal["subscription_recharge"] = "subscription_recharge"
    plan_slug: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_invoice_id: Optional[str] = None
    previous_balance: Optional[int] = None


class BonusMetadata(_Metadata):
    kind: Literal["bonus"] = "bonus"
    reason: str
    granted_by: Optional[str] = None


class DownloadMetadata(_Metadata):
    kind: Literal["download"] = "download"
    result_id: str
    generation_id: Optional[str] = None


TransactionMetadata = Annotated[
    Union[
        GenerationMetadata,
        ImprovementMetadata,
        RefundMetadata,
        PurchaseMetadata,
        SubscriptionRechargeMetadata,
        BonusMetadata,
        DownloadMetadata,
    ],
    Field(discriminator="kind"),
]

_metadata_adapter: TypeAdapter[TransactionMetadata] = TypeAdapter(TransactionMetadata)


def build_metadata(tx_type: CreditTransactionType | str, raw: Any) -> TransactionMetadata:
    """Validate ``raw`` as the metadata variant for ``tx_type``.

    ``raw`` may be a variant instance, a dict (snake_case or camelCase keys)
    or None. A ``kind`` that disagrees with the transaction type is rejected.
    """
    kind = CreditTransactionType(tx_type).value
    if isinstance(raw, _Metadata):
        raw = raw.model_dump()
    data = dict(raw or {})
    declared = data.get("kind")
    if declared is not None and declared != kind:
        raise InvalidRequestError(
            f"Metadata kind '{declared}' does not match transaction type '{kind}'."
        )
    data["kind"] = kind
    try:
        return _metadata_adapter.validate_python(data)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise InvalidRequestError(f"Invalid {kind} metadata: {fields}") from exc


def dump_metadata(metadata: TransactionMetadata) -> dict[str, Any]:
    return metadata.model_dump(mode="json", exclude_none=True)
