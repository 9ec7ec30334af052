from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from app.database import Base


class CreditLedgerEntry(Base):
    """
    Append-only credit movement. A user's balance is the sum of deltas.
    """
    __tablename__ = "user_credits_ledger"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    delta = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)  # spend_view_item | earn_from_points ...
    ref_type = Column(String, nullable=True)
    ref_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
