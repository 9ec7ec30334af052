from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Boolean

from app.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    display_name = Column(String, nullable=True)

    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False, nullable=False)

    # points earned from moderated contributions, convertible to credits
    points_total = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
