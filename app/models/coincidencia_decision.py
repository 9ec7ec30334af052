from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from app.database import Base


class CoincidenciaDecision(Base):
    __tablename__ = "espai_coincidencia_decisions"

    id = Column(Integer, primary_key=True, index=True)
    coincidencia_id = Column(
        Integer,
        ForeignKey("espai_coincidencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    decision = Column(String, nullable=False)  # accept | ignore | reject | undo
    decided_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
