"""Error taxonomy shared by the ledger, lifecycle, purchase, and billing code.

``ExpectedBusinessError`` subclasses are normal outcomes rendered as 4xx
responses by the app exception handler. Transient infrastructure errors are
retried locally and only escape after the retry budget is spent.
"""

from __future__ import annotations

from typing import Any


class ExpectedBusinessError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def payload(self) -> dict[str, Any]:
        return {}


class InsufficientCreditsError(ExpectedBusinessError):
    status_code = 402

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}."
        )
        self.required = int(required)
        self.available = int(available)

    def payload(self) -> dict[str, Any]:
        return {"required": self.required, "available": self.available}


class DailyLimitReachedError(ExpectedBusinessError):
    status_code = 429

    def __init__(self, limit: int):
        super().__init__(
            f"Daily limit of {limit} free regenerations reached. Try again tomorrow."
        )
        self.limit = limit

    def payload(self) -> dict[str, Any]:
        return {"limitReached": True, "limit": self.limit}


class MissingCleanAssetError(ExpectedBusinessError):
    status_code = 422

    def __init__(self, result_id: str):
        super().__init__(
            "The original image for this result is no longer available. Please regenerate it."
        )
        self.result_id = result_id

    def payload(self) -> dict[str, Any]:
        return {"code": "MissingCleanAsset", "resultId": self.result_id, "regenerate": True}


class ResourceNotFoundError(ExpectedBusinessError):
    status_code = 404


class ForbiddenError(ExpectedBusinessError):
    status_code = 403


class InvalidRequestError(ExpectedBusinessError):
    status_code = 422


class TransientInfrastructureError(Exception):
    """Network or 5xx failure from a collaborator; safe to retry."""


class FatalError(Exception):
    """Request rejected before any state mutation (bad signature, malformed payload)."""


class GenerationCompensatedError(Exception):
    """A debit succeeded but the dependent write failed; the refund has already been applied."""

    def __init__(self, message: str, *, refund_transaction_id: int | None = None):
        super().__init__(message)
        self.message = message
        self.refund_transaction_id = refund_transaction_id
