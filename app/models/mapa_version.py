from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text

from app.database import Base


class MapaVersion(Base):
    __tablename__ = "municipi_mapa_versions"

    id = Column(Integer, primary_key=True, index=True)
    mapa_id = Column(Integer, ForeignKey("municipi_mapes.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)

    titol = Column(String, nullable=True)
    data_json = Column(Text, nullable=True)

    status = Column(String, nullable=False, default="draft")
    lock_version = Column(Integer, nullable=False, default=0)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    moderated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    moderated_at = Column(DateTime, nullable=True)
    moderation_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
