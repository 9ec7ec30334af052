from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from app.database import Base


class IntegracioGrampsLog(Base):
    __tablename__ = "espai_integracions_gramps_log"

    id = Column(Integer, primary_key=True, index=True)
    integracio_id = Column(
        Integer,
        ForeignKey("espai_integracions_gramps.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = Column(String, nullable=False)  # ok | error
    message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    integracio = relationship("IntegracioGramps", back_populates="logs")
