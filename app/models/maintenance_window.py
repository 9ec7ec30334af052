from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Text

from app.database import Base


class MaintenanceWindow(Base):
    __tablename__ = "maintenance_windows"

    id = Column(Integer, primary_key=True, index=True)

    title = Column(String, nullable=True)
    message = Column(Text, nullable=True)
    severity = Column(String, nullable=False, default="info")  # info | warning | critical

    cta_label = Column(String, nullable=True)
    cta_url = Column(String, nullable=True)

    is_enabled = Column(Boolean, nullable=False, default=True)
    dismissible = Column(Boolean, nullable=False, default=True)
    starts_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
