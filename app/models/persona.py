from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from app.database import Base


class Persona(Base):
    __tablename__ = "espai_persones"
    __table_args__ = (
        # NULL external ids never collide
        UniqueConstraint("arbre_id", "external_id", name="uq_persona_arbre_external"),
    )

    id = Column(Integer, primary_key=True, index=True)
    arbre_id = Column(Integer, ForeignKey("espai_arbres.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    external_id = Column(String, nullable=True)

    nom = Column(String, nullable=True)
    cognom1 = Column(String, nullable=True)
    cognom2 = Column(String, nullable=True)
    nom_complet = Column(String, nullable=True)
    sexe = Column(String, nullable=True)  # male | female | unknown | NULL

    data_naixement = Column(String, nullable=True)
    lloc_naixement = Column(String, nullable=True)
    data_defuncio = Column(String, nullable=True)
    lloc_defuncio = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    visibility = Column(String, nullable=False, default="visible")  # visible | hidden
    status = Column(String, nullable=False, default="active")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    arbre = relationship("Arbre", back_populates="persones")
