from datetime import datetime

from sqlalchemy import Column, Integer, DateTime, ForeignKey

from app.database import Base


class MunicipiHistoria(Base):
    """
    Holder for the general history section of a municipality.
    current_general_version_id points at the published version shown to readers.
    """
    __tablename__ = "municipi_historia"

    id = Column(Integer, primary_key=True, index=True)
    municipi_id = Column(Integer, ForeignKey("municipis.id", ondelete="CASCADE"), nullable=False, unique=True)
    current_general_version_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
