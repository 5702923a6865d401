from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from ..platform.database import Base


class ProcessedBillingEvent(Base):
    """Provider event ids whose effects have been committed."""

    __tablename__ = "processed_billing_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, unique=True, index=True, nullable=False)
    event_type = Column(String, nullable=False)
    outcome = Column(String, nullable=False)
    processed_at = Column(DateTime(timezone=True), server_default=func.now())
