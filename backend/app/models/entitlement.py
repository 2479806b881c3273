"""Entitlement model"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class Entitlement(Base):
    """Access a user holds to a purchased course, book or live class"""
    __tablename__ = "entitlements"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type = Column(String(20), nullable=False)  # 'course', 'book', 'live_class'
    item_id = Column(Integer, nullable=False)
    payment_id = Column(String(255), nullable=True)  # gateway payment that granted access
    granted_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    user = relationship("User", back_populates="entitlements")

    __table_args__ = (
        UniqueConstraint('user_id', 'item_type', 'item_id', name='uq_entitlements_user_item'),
    )
