from .credits import (
    BalanceResponse,
    DebitRequest,
    DebitResponse,
    TransactionHistoryResponse,
    TransactionView,
)
from .credit_metadata import TransactionMetadata, build_metadata, dump_metadata
from .generation import (
    CreateGenerationRequest,
    DownloadRequest,
    DownloadResponse,
    FeedbackRegenerateRequest,
    FeedbackRegenerateResponse,
    GenerationCreatedResponse,
    GenerationView,
    ImproveRequest,
)
from .billing import CheckoutRequest, CheckoutResponse, PlanView, WebhookAck

__all__ = [
    "BalanceResponse",
    "DebitRequest",
    "DebitResponse",
    "TransactionHistoryResponse",
    "TransactionView",
    "TransactionMetadata",
    "build_metadata",
    "dump_metadata",
    "CreateGenerationRequest",
    "DownloadRequest",
    "DownloadResponse",
    "FeedbackRegenerateRequest",
    "FeedbackRegenerateResponse",
    "GenerationCreatedResponse",
    "GenerationView",
    "ImproveRequest",
    "CheckoutRequest",
    "CheckoutResponse",
    "PlanView",
    "WebhookAck",
]
