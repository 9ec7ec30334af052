from datetime import datetime

from sqlalchemy import Column, Integer, DateTime, ForeignKey

from app.database import Base


class EventHistoric(Base):
    __tablename__ = "events_historics"

    id = Column(Integer, primary_key=True, index=True)
    municipi_id = Column(Integer, ForeignKey("municipis.id", ondelete="CASCADE"), nullable=False, index=True)
    current_version_id = Column(Integer, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
