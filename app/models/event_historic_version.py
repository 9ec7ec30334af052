from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text

from app.database import Base


class EventHistoricVersion(Base):
    __tablename__ = "events_historics_versions"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events_historics.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)

    titol = Column(String, nullable=True)
    tipus = Column(String, nullable=True)  # guerra | plaga | fam | ... | altres
    resum = Column(Text, nullable=True)
    descripcio = Column(Text, nullable=True)
    data_inici = Column(String, nullable=True)  # YYYY-MM-DD
    data_fi = Column(String, nullable=True)
    precisio = Column(String, nullable=True)  # dia | mes | any | decada
    fonts = Column(Text, nullable=True)

    status = Column(String, nullable=False, default="draft")
    lock_version = Column(Integer, nullable=False, default=0)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    moderated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    moderated_at = Column(DateTime, nullable=True)
    moderation_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
