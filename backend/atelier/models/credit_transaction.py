import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..platform.database import Base


class CreditTransactionType(str, enum.Enum):
    GENERATION = "generation"
    IMPROVEMENT = "improvement"
    REFUND = "refund"
    PURCHASE = "purchase"
    SUBSCRIPTION_RECHARGE = "subscription_recharge"
    BONUS = "bonus"
    DOWNLOAD = "download"


class CreditTransaction(Base):
    """Append-only ledger row. Rows are never updated or deleted."""

    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    type = Column(String, nullable=False, index=True)
    description = Column(String, nullable=True)
    entry_metadata = Column("metadata", JSON, nullable=True)
    external_ref = Column(String, nullable=True, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="credit_transactions")
