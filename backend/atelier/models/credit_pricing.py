from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from ..platform.database import Base


class CreditPricing(Base):
    __tablename__ = "credit_pricing"

    id = Column(Integer, primary_key=True, index=True)
    action_type = Column(String, unique=True, index=True, nullable=False)
    credits_required = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
