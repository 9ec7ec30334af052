from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from app.database import Base


class IntegracioGramps(Base):
    """
    Binding between a user's tree and a Gramps Web server.
    token_enc holds the AES-GCM sealed token, never the plaintext.
    """
    __tablename__ = "espai_integracions_gramps"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    arbre_id = Column(Integer, ForeignKey("espai_arbres.id", ondelete="CASCADE"), nullable=False)

    base_url = Column(String, nullable=False)
    username = Column(String, nullable=True)
    token_enc = Column(Text, nullable=True)

    status = Column(String, nullable=False, default="connected")  # connected | error | disabled
    last_sync_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    logs = relationship(
        "IntegracioGrampsLog",
        back_populates="integracio",
        cascade="all, delete-orphan",
        order_by="IntegracioGrampsLog.id.desc()",
    )
