from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from app.database import Base


class GrupMembre(Base):
    __tablename__ = "espai_grup_membres"
    __table_args__ = (
        UniqueConstraint("grup_id", "user_id", name="uq_grup_membre"),
    )

    id = Column(Integer, primary_key=True, index=True)
    grup_id = Column(Integer, ForeignKey("espai_grups.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    role = Column(String, nullable=False, default="member")  # viewer | member | admin | owner
    status = Column(String, nullable=False, default="invited")  # invited | active | removed
    joined_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    grup = relationship("Grup", back_populates="members")
    user = relationship("User", foreign_keys=[user_id])
