from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from app.database import Base


class Registre(Base):
    """
    One indexed act (baptism, marriage, burial...) transcribed from a book.
    """
    __tablename__ = "transcripcions_raw"

    id = Column(Integer, primary_key=True, index=True)
    llibre_id = Column(Integer, ForeignKey("llibres.id"), nullable=False, index=True)

    tipus_acte = Column(String, nullable=True)
    any_doc = Column(Integer, nullable=True)
    data_acte_iso = Column(String, nullable=True)  # YYYY-MM-DD
    pagina = Column(String, nullable=True)
    moderation_status = Column(String, nullable=False, default="publicat")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    llibre = relationship("Llibre")
    persones = relationship(
        "RegistrePersona",
        back_populates="registre",
        cascade="all, delete-orphan",
        order_by="RegistrePersona.id",
    )
