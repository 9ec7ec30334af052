from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text

from app.database import Base


class GrupConflicte(Base):
    __tablename__ = "espai_grup_conflictes"

    id = Column(Integer, primary_key=True, index=True)
    grup_id = Column(Integer, ForeignKey("espai_grups.id", ondelete="CASCADE"), nullable=False, index=True)
    arbre_id = Column(Integer, ForeignKey("espai_arbres.id", ondelete="SET NULL"), nullable=True)

    conflict_type = Column(String, nullable=False, default="persona")
    object_id = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending | resolved
    summary = Column(String, nullable=True)
    details_json = Column(Text, nullable=True)

    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
