from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text

from app.database import Base


class NotificationPref(Base):
    __tablename__ = "espai_notification_prefs"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    freq = Column(String, nullable=False, default="instant")  # instant | daily | weekly | off

    # NULL = every kind enabled, "[]" = none
    types_json = Column(Text, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
