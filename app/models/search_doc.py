from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, UniqueConstraint

from app.database import Base


class SearchDoc(Base):
    """
    Denormalised, normalised view of one archival entity.
    Rebuilt from the source record, never edited directly.
    """
    __tablename__ = "search_docs"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_search_doc_entity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String, nullable=False, index=True)  # registre_raw
    entity_id = Column(Integer, nullable=False)

    person_nom_norm = Column(String, nullable=True)
    cognoms_norm = Column(String, nullable=True)
    full_norm = Column(Text, nullable=True)
    person_tokens_norm = Column(Text, nullable=True)
    cognoms_tokens_norm = Column(Text, nullable=True)
    person_phonetic = Column(Text, nullable=True)
    cognoms_phonetic = Column(Text, nullable=True)
    cognoms_canon = Column(String, nullable=True)

    municipi_id = Column(Integer, nullable=True, index=True)
    llibre_id = Column(Integer, nullable=True)
    data_acte = Column(String, nullable=True)
    any_acte = Column(Integer, nullable=True, index=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
