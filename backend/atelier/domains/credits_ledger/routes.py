"""Credit balance, history, and direct debits."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...platform.database import get_db
from ...platform.request_context import bind_account_id
from ...schemas.credits import (
    BalanceResponse,
    DebitRequest,
    DebitResponse,
    TransactionHistoryResponse,
    TransactionView,
)
from ...services import credit_ledger_service as ledger

router = APIRouter(prefix="/credits", tags=["Credits"])


@router.post("/debit", response_model=DebitResponse)
def debit_credits(data: DebitRequest, db: Session = Depends(get_db)):
    """Debit credits atomically. 402 with required/available when the balance is short."""
    bind_account_id(data.account_id)
    entry = ledger.debit(
        db,
        data.account_id,
        data.amount,
        data.type,
        data.metadata,
        description=data.description,
        external_ref=data.external_ref,
    )
    return DebitResponse(balance=entry.balance, tx_id=entry.transaction_id)


@router.get("/balance", response_model=BalanceResponse)
def get_balance(account_id: str = Query(..., alias="accountId"), db: Session = Depends(get_db)):
    return BalanceResponse(account_id=account_id, balance=ledger.get_balance(db, account_id))


@router.get("/history", response_model=TransactionHistoryResponse)
def get_history(
    account_id: str = Query(..., alias="accountId"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    ledger.get_balance(db, account_id)
    rows, total = ledger.list_transactions(db, account_id, limit=limit, offset=offset)
    return TransactionHistoryResponse(
        transactions=[TransactionView.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )
