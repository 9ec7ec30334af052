from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text

from app.database import Base


class ImportJob(Base):
    __tablename__ = "espai_imports"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    arbre_id = Column(Integer, ForeignKey("espai_arbres.id", ondelete="CASCADE"), nullable=False, index=True)
    font_id = Column(Integer, ForeignKey("espai_fonts_importacio.id", ondelete="SET NULL"), nullable=True)

    import_type = Column(String, nullable=False)  # gedcom | gramps
    import_mode = Column(String, nullable=False, default="replace")  # replace | merge | sync
    status = Column(String, nullable=False, default="queued", index=True)

    progress_total = Column(Integer, nullable=False, default=0)
    progress_done = Column(Integer, nullable=False, default=0)
    summary_json = Column(Text, nullable=True)
    error_text = Column(Text, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
