from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint

from app.database import Base


class ImportSource(Base):
    __tablename__ = "espai_fonts_importacio"
    __table_args__ = (
        UniqueConstraint("owner_user_id", "checksum_sha256", name="uq_font_owner_checksum"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    source_type = Column(String, nullable=False, default="gedcom")  # gedcom | gramps
    original_filename = Column(String, nullable=True)
    storage_path = Column(String, nullable=True)
    size_bytes = Column(Integer, nullable=True)
    checksum_sha256 = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
