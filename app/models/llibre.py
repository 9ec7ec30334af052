from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from app.database import Base


class Llibre(Base):
    """
    A bound book of sacramental records held at one archive.
    """
    __tablename__ = "llibres"

    id = Column(Integer, primary_key=True, index=True)
    municipi_id = Column(Integer, ForeignKey("municipis.id"), nullable=True)
    titol = Column(String, nullable=False)
    tipus_llibre = Column(String, nullable=True)  # baptismes | matrimonis | obits ...
    created_at = Column(DateTime, default=datetime.utcnow)
