from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from ..platform.database import Base


class UserDailyLimit(Base):
    """Per-account, per-UTC-day counter of free feedback regenerations."""

    __tablename__ = "user_daily_limits"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_user_daily_limits_user_date"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    date = Column(Date, nullable=False)
    dislike_count = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
