from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime

from app.database import Base


class Municipi(Base):
    __tablename__ = "municipis"

    id = Column(Integer, primary_key=True, index=True)
    nom = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
