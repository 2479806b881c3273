"""Course model"""
from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime
from datetime import datetime, timezone
from app.models.base import Base


class Course(Base):
    """Purchasable course; price is in major currency units (e.g. rupees)"""
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_published = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
