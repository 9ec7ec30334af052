from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey, Text, UniqueConstraint

from app.database import Base


class Coincidencia(Base):
    """
    Candidate link between a tree person and an archival record.
    """
    __tablename__ = "espai_coincidencies"
    __table_args__ = (
        UniqueConstraint(
            "owner_user_id", "persona_id", "target_type", "target_id",
            name="uq_coincidencia_target",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    arbre_id = Column(Integer, ForeignKey("espai_arbres.id", ondelete="CASCADE"), nullable=False)
    persona_id = Column(Integer, ForeignKey("espai_persones.id", ondelete="CASCADE"), nullable=False)

    target_type = Column(String, nullable=False, default="registre_raw")
    target_id = Column(Integer, nullable=False)

    score = Column(Float, nullable=False, default=0.0)
    reason_json = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending | accepted | ignored | rejected

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
