from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from ..models.credit_transaction import CreditTransactionType
from .base import CamelModel


class DebitRequest(CamelModel):
    account_id: str = Field(min_length=1)
    amount: int = Field(gt=0)
    type: CreditTransactionType
    metadata: dict[str, Any] = Field(default_factory=dict)
    description: Optional[str] = Field(default=None, max_length=500)
    external_ref: Optional[str] = Field(default=None, max_length=200)


class DebitResponse(CamelModel):
    balance: int
    tx_id: int


class BalanceResponse(CamelModel):
    account_id: str
    balance: int


class TransactionView(CamelModel):
    id: int
    amount: int
    balance_after: int
    type: str
    description: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias="entry_metadata")
    created_at: Optional[datetime] = None


class TransactionHistoryResponse(CamelModel):
    transactions: list[TransactionView]
    total: int
    limit: int
    offset: int
