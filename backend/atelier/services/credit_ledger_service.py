"""Credit ledger: the only code that changes ``users.credits``.

Every balance change is a single conditional UPDATE on the user row followed
by one append-only ``credit_transactions`` row carrying the post-change
balance. ``external_ref`` is the idempotency key: a second call with the same
key returns the first entry instead of applying again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.credit_transaction import CreditTransaction, CreditTransactionType
from ..models.user import User
from ..platform.errors import (
    ForbiddenError,
    InsufficientCreditsError,
    InvalidRequestError,
    ResourceNotFoundError,
)
from ..schemas.credit_metadata import build_metadata, dump_metadata

logger = logging.getLogger(__name__)

DEBIT_TYPES = frozenset(
    {
        CreditTransactionType.GENERATION,
        CreditTransactionType.IMPROVEMENT,
        CreditTransactionType.DOWNLOAD,
    }
)
CREDIT_TYPES = frozenset(
    {
        CreditTransactionType.REFUND,
        CreditTransactionType.PURCHASE,
        CreditTransactionType.SUBSCRIPTION_RECHARGE,
        CreditTransactionType.BONUS,
    }
)


@dataclass(frozen=True)
class LedgerEntry:
    balance: int
    transaction_id: int
    created: bool


def refund_ref(transaction_id: int) -> str:
    return f"refund:{transaction_id}"


def _find_by_ref(db: Session, external_ref: str | None) -> CreditTransaction | None:
    if not external_ref:
        return None
    return db.execute(
        select(CreditTransaction).where(CreditTransaction.external_ref == external_ref)
    ).scalar_one_or_none()


def _replayed(existing: CreditTransaction, user_id: str) -> LedgerEntry:
    if existing.user_id != user_id:
        raise InvalidRequestError("external_ref is already used by another account.")
    return LedgerEntry(balance=int(existing.balance_after), transaction_id=existing.id, created=False)


def _current_balance(db: Session, user_id: str, *, for_update: bool = False) -> int:
    stmt = select(User.credits).where(User.id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    balance = db.execute(stmt).scalar_one_or_none()
    if balance is None:
        raise ResourceNotFoundError(f"Account {user_id} not found.")
    return int(balance)


def _apply(
    db: Session,
    *,
    user_id: str,
    tx_type: CreditTransactionType,
    metadata: Any,
    description: str | None,
    external_ref: str | None,
    commit: bool,
    mutate: Callable[[], tuple[int, int]],
) -> LedgerEntry:
    """Run ``mutate`` (returns ``(amount, balance_after)``) and append its transaction row."""
    meta = build_metadata(tx_type, metadata)
    existing = _find_by_ref(db, external_ref)
    if existing is not None:
        return _replayed(existing, user_id)

    amount, balance_after = mutate()
    entry = CreditTransaction(
        user_id=user_id,
        amount=amount,
        balance_after=balance_after,
        type=tx_type.value,
        description=description,
        entry_metadata=dump_metadata(meta),
        external_ref=external_ref,
    )
    db.add(entry)
    try:
        db.flush()
    except IntegrityError:
        if not (commit and external_ref):
            raise
        # Lost a race on the same idempotency key; the winner's row stands.
        db.rollback()
        winner = _find_by_ref(db, external_ref)
        if winner is None:
            raise
        return _replayed(winner, user_id)

    if commit:
        db.commit()
    return LedgerEntry(balance=balance_after, transaction_id=entry.id, created=True)


def debit(
    db: Session,
    user_id: str,
    amount: int,
    tx_type: CreditTransactionType | str,
    metadata: Any = None,
    *,
    description: str | None = None,
    external_ref: str | None = None,
    commit: bool = True,
) -> LedgerEntry:
    """Subtract ``amount`` credits, or raise ``InsufficientCreditsError`` without writing anything."""
    tx_type = CreditTransactionType(tx_type)
    amount = int(amount)
    if amount <= 0:
        raise InvalidRequestError("Debit amount must be positive.")
    if tx_type not in DEBIT_TYPES:
        raise InvalidRequestError(f"'{tx_type.value}' is not a debit transaction type.")

    def mutate() -> tuple[int, int]:
        stmt = (
            update(User)
            .where(User.id == user_id, User.credits >= amount)
            .values(credits=User.credits - amount)
            .returning(User.credits)
            .execution_options(synchronize_session=False)
        )
        new_balance = db.execute(stmt).scalar_one_or_none()
        if new_balance is None:
            available = _current_balance(db, user_id)
            logger.info(
                "Debit rejected user_id=%s required=%d available=%d", user_id, amount, available
            )
            raise InsufficientCreditsError(required=amount, available=available)
        return -amount, int(new_balance)

    result = _apply(
        db,
        user_id=user_id,
        tx_type=tx_type,
        metadata=metadata,
        description=description,
        external_ref=external_ref,
        commit=commit,
        mutate=mutate,
    )
    if result.created:
        logger.info(
            "Debited credits user_id=%s amount=%d type=%s balance=%d tx_id=%d",
            user_id,
            amount,
            tx_type.value,
            result.balance,
            result.transaction_id,
        )
    return result


def credit(
    db: Session,
    user_id: str,
    amount: int,
    tx_type: CreditTransactionType | str,
    metadata: Any = None,
    *,
    description: str | None = None,
    external_ref: str | None = None,
    commit: bool = True,
) -> LedgerEntry:
    """Add ``amount`` credits to the account."""
    tx_type = CreditTransactionType(tx_type)
    amount = int(amount)
    if amount <= 0:
        raise InvalidRequestError("Credit amount must be positive.")
    if tx_type not in CREDIT_TYPES:
        raise InvalidRequestError(f"'{tx_type.value}' is not a credit transaction type.")

    def mutate() -> tuple[int, int]:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(credits=User.credits + amount)
            .returning(User.credits)
            .execution_options(synchronize_session=False)
        )
        new_balance = db.execute(stmt).scalar_one_or_none()
        if new_balance is None:
            raise ResourceNotFoundError(f"Account {user_id} not found.")
        return amount, int(new_balance)

    result = _apply(
        db,
        user_id=user_id,
        tx_type=tx_type,
        metadata=metadata,
        description=description,
        external_ref=external_ref,
        commit=commit,
        mutate=mutate,
    )
    if result.created:
        logger.info(
            "Credited credits user_id=%s amount=%d type=%s balance=%d tx_id=%d",
            user_id,
            amount,
            tx_type.value,
            result.balance,
            result.transaction_id,
        )
    return result


def set_absolute(
    db: Session,
    user_id: str,
    new_balance: int,
    tx_type: CreditTransactionType | str,
    metadata: Any = None,
    *,
    description: str | None = None,
    external_ref: str | None = None,
    commit: bool = True,
) -> LedgerEntry:
    """Set the balance to ``new_balance``; the transaction records the signed difference."""
    tx_type = CreditTransactionType(tx_type)
    new_balance = int(new_balance)
    if new_balance < 0:
        raise InvalidRequestError("Balance cannot be negative.")

    def mutate() -> tuple[int, int]:
        previous = _current_balance(db, user_id, for_update=True)
        db.execute(
            update(User)
            .where(User.id == user_id)
            .values(credits=new_balance)
            .execution_options(synchronize_session=False)
        )
        return new_balance - previous, new_balance

    result = _apply(
        db,
        user_id=user_id,
        tx_type=tx_type,
        metadata=metadata,
        description=description,
        external_ref=external_ref,
        commit=commit,
        mutate=mutate,
    )
    if result.created:
        logger.info(
            "Set balance user_id=%s balance=%d type=%s tx_id=%d",
            user_id,
            result.balance,
            tx_type.value,
            result.transaction_id,
        )
    return result


def refund(
    db: Session,
    user_id: str,
    original_transaction_id: int,
    reason: str | None = None,
    *,
    commit: bool = True,
) -> LedgerEntry:
    """Credit back exactly what ``original_transaction_id`` debited. Safe to call repeatedly."""
    original = db.get(CreditTransaction, original_transaction_id)
    if original is None:
        raise ResourceNotFoundError(f"Transaction {original_transaction_id} not found.")
    if original.user_id != user_id:
        raise ForbiddenError("Transaction belongs to another account.")
    if int(original.amount) >= 0:
        raise InvalidRequestError("Only debit transactions can be refunded.")

    return credit(
        db,
        user_id,
        -int(original.amount),
        CreditTransactionType.REFUND,
        {"original_transaction_id": original.id, "reason": reason},
        description=f"Refund for transaction {original.id}",
        external_ref=refund_ref(original.id),
        commit=commit,
    )


def get_balance(db: Session, user_id: str) -> int:
    return _current_balance(db, user_id)


def list_transactions(
    db: Session, user_id: str, *, limit: int = 50, offset: int = 0
) -> tuple[list[CreditTransaction], int]:
    """Newest-first page of the account's transactions plus the total count."""
    total = db.execute(
        select(func.count(CreditTransaction.id)).where(CreditTransaction.user_id == user_id)
    ).scalar_one()
    rows = (
        db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)


def replay_balance(db: Session, user_id: str) -> int:
    """Sum of every transaction amount; equals the stored balance when the ledger is intact."""
    total = db.execute(
        select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            CreditTransaction.user_id == user_id
        )
    ).scalar_one()
    return int(total)
