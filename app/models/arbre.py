from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from app.database import Base


class Arbre(Base):
    """
    A private family tree owned by one user.
    """
    __tablename__ = "espai_arbres"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    nom = Column(String, nullable=False)
    visibility = Column(String, nullable=False, default="private")  # private | restricted | public
    status = Column(String, nullable=False, default="active")  # active | archived

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    persones = relationship(
        "Persona",
        back_populates="arbre",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
