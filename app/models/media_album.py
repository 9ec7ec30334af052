from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from app.database import Base


class MediaAlbum(Base):
    __tablename__ = "media_albums"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String, unique=True, index=True, nullable=False)
    owner_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    titol = Column(String, nullable=False)
    descripcio = Column(Text, nullable=True)

    # default price for every item in the album
    credit_cost = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    items = relationship(
        "MediaItem",
        back_populates="album",
        cascade="all, delete-orphan",
    )
