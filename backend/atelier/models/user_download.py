from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from ..platform.database import Base


class UserDownload(Base):
    __tablename__ = "user_downloads"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    generation_id = Column(String(36), ForeignKey("generations.id"), nullable=False)
    generation_result_id = Column(String(36), ForeignKey("generation_results.id"), unique=True, nullable=False)
    image_path = Column(String, nullable=False)
    credits_charged = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
