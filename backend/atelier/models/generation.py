import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..platform.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class GenerationStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationKind(str, enum.Enum):
    STANDARD = "standard"
    IMPROVEMENT = "improvement"
    FEEDBACK = "feedback"


class Generation(Base):
    __tablename__ = "generations"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    tool_id = Column(String, nullable=False)
    kind = Column(String(20), nullable=False, default=GenerationKind.STANDARD.value)
    status = Column(String(20), nullable=False, index=True, default=GenerationStatus.PENDING.value)
    input_data = Column(JSON, nullable=True)
    output_data = Column(JSON, nullable=True)
    credits_used = Column(Integer, nullable=False, default=0)
    debit_transaction_id = Column(Integer, ForeignKey("credit_transactions.id"), nullable=True)
    # Result an improvement or feedback regeneration was derived from.
    parent_result_id = Column(String(36), nullable=True, index=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="generations")
    results = relationship("GenerationResult", back_populates="generation")
    debit_transaction = relationship("CreditTransaction")


class GenerationResult(Base):
    __tablename__ = "generation_results"

    id = Column(String(36), primary_key=True, default=_new_id)
    generation_id = Column(String(36), ForeignKey("generations.id"), index=True, nullable=False)
    image_path = Column(String, nullable=False)
    image_url = Column(String, nullable=False)
    mime_type = Column(String, nullable=False, default="image/png")
    has_watermark = Column(Boolean, nullable=False, default=True)
    # Unwatermarked bytes (base64) kept server-side until the result is purchased.
    clean_image_data = Column(Text, nullable=True)
    clean_mime_type = Column(String, nullable=True)
    is_purchased = Column(Boolean, nullable=False, default=False)
    purchase_bucket = Column(String, nullable=True)
    purchase_path = Column(String, nullable=True)
    purchased_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    generation = relationship("Generation", back_populates="results")
