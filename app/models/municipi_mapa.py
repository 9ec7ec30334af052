from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from app.database import Base


class MunicipiMapa(Base):
    __tablename__ = "municipi_mapes"

    id = Column(Integer, primary_key=True, index=True)
    municipi_id = Column(Integer, ForeignKey("municipis.id", ondelete="CASCADE"), nullable=False, index=True)
    nom = Column(String, nullable=False)
    current_version_id = Column(Integer, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
