from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint

from app.database import Base


class Relacio(Base):
    """
    Directed edge persona -> related_persona inside one tree.
    'father' / 'mother' point from the child to the parent.
    """
    __tablename__ = "espai_relacions"
    __table_args__ = (
        UniqueConstraint("persona_id", "related_persona_id", "relation_type", name="uq_relacio_triple"),
    )

    id = Column(Integer, primary_key=True, index=True)
    arbre_id = Column(Integer, ForeignKey("espai_arbres.id", ondelete="CASCADE"), nullable=False, index=True)
    persona_id = Column(Integer, ForeignKey("espai_persones.id", ondelete="CASCADE"), nullable=False, index=True)
    related_persona_id = Column(Integer, ForeignKey("espai_persones.id", ondelete="CASCADE"), nullable=False)

    relation_type = Column(String, nullable=False)  # father | mother | parent | child | spouse

    created_at = Column(DateTime, default=datetime.utcnow)
