from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from app.database import Base


class MediaItem(Base):
    __tablename__ = "media_items"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String, unique=True, index=True, nullable=False)
    album_id = Column(Integer, ForeignKey("media_albums.id", ondelete="CASCADE"), nullable=False, index=True)

    titol = Column(String, nullable=True)
    original_filename = Column(String, nullable=True)
    storage_path = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)
    size_bytes = Column(Integer, nullable=True)

    # 0 = inherit the album price
    credit_cost = Column(Integer, nullable=False, default=0)
    # indexing difficulty 0..100, drives the points reward
    difficulty = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    album = relationship("MediaAlbum", back_populates="items")
