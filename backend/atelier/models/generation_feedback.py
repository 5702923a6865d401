from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from ..platform.database import Base


class GenerationFeedback(Base):
    __tablename__ = "generation_feedback"
    __table_args__ = (
        UniqueConstraint("user_id", "generation_result_id", name="uq_generation_feedback_user_result"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    generation_result_id = Column(String(36), ForeignKey("generation_results.id"), nullable=False)
    feedback_type = Column(String(20), nullable=False, default="dislike")
    feedback_text = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
