from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text

from app.database import Base


class HistoriaFetVersion(Base):
    __tablename__ = "municipi_historia_fet_versions"

    id = Column(Integer, primary_key=True, index=True)
    fet_id = Column(Integer, ForeignKey("municipi_historia_fets.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)

    any_inici = Column(Integer, nullable=True)
    any_fi = Column(Integer, nullable=True)
    data_display = Column(String, nullable=True)
    titol = Column(String, nullable=True)
    resum = Column(Text, nullable=True)
    cos_text = Column(Text, nullable=True)
    tags_json = Column(Text, nullable=True)
    fonts_json = Column(Text, nullable=True)  # one "label|url" per line

    status = Column(String, nullable=False, default="draft")
    lock_version = Column(Integer, nullable=False, default=0)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    moderated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    moderated_at = Column(DateTime, nullable=True)
    moderation_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
