from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint

from app.database import Base


class Notification(Base):
    __tablename__ = "espai_notifications"
    __table_args__ = (
        # rows without a dedupe key are never collapsed
        UniqueConstraint("user_id", "dedupe_key", name="uq_notification_dedupe"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    kind = Column(String, nullable=False)  # matches_pending | gramps_error | group_conflicts
    title = Column(String, nullable=True)
    body = Column(Text, nullable=True)
    url = Column(String, nullable=True)
    status = Column(String, nullable=False, default="unread")  # unread | read

    object_type = Column(String, nullable=True)
    object_id = Column(Integer, nullable=True)
    group_id = Column(Integer, nullable=True)
    tree_id = Column(Integer, nullable=True)
    dedupe_key = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    read_at = Column(DateTime, nullable=True)
