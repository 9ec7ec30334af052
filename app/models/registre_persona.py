from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship

from app.database import Base


class RegistrePersona(Base):
    __tablename__ = "transcripcions_persones_raw"

    id = Column(Integer, primary_key=True, index=True)
    transcripcio_id = Column(
        Integer,
        ForeignKey("transcripcions_raw.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    rol = Column(String, nullable=False)  # batejat | pare | mare | nuvi | parenovi ...
    nom = Column(String, nullable=True)
    cognom1 = Column(String, nullable=True)
    cognom2 = Column(String, nullable=True)
    municipi_id = Column(Integer, ForeignKey("municipis.id"), nullable=True)

    registre = relationship("Registre", back_populates="persones")
