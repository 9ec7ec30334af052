from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text

from app.database import Base


class GrupCanvi(Base):
    """
    Append-only audit row. Never updated or deleted by the application.
    """
    __tablename__ = "espai_grup_canvis"

    id = Column(Integer, primary_key=True, index=True)
    grup_id = Column(Integer, ForeignKey("espai_grups.id", ondelete="CASCADE"), nullable=False, index=True)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    action = Column(String, nullable=False)
    object_type = Column(String, nullable=True)
    object_id = Column(Integer, nullable=True)
    payload_json = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
