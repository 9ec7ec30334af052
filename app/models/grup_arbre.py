from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from app.database import Base


class GrupArbre(Base):
    __tablename__ = "espai_grup_arbres"
    __table_args__ = (
        UniqueConstraint("grup_id", "arbre_id", name="uq_grup_arbre"),
    )

    id = Column(Integer, primary_key=True, index=True)
    grup_id = Column(Integer, ForeignKey("espai_grups.id", ondelete="CASCADE"), nullable=False, index=True)
    arbre_id = Column(Integer, ForeignKey("espai_arbres.id", ondelete="CASCADE"), nullable=False)
    added_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    status = Column(String, nullable=False, default="active")  # active | removed
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    arbre = relationship("Arbre")
