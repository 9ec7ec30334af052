from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from app.database import Base


class MediaAccessLog(Base):
    __tablename__ = "media_access_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False)
    grant_id = Column(Integer, ForeignKey("media_access_grants.id", ondelete="SET NULL"), nullable=True)

    access_type = Column(String, nullable=False, default="grant")
    credits_spent = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
