"""PaymentRecord model"""
from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, ForeignKey, Index, UniqueConstraint, text
from datetime import datetime, timezone
from app.models.base import Base


class PaymentRecord(Base):
    """Append-only ledger of terminal gateway payment events.

    Rows are written only by the webhook reconciler and never updated.
    ``payment_id`` and ``order_id`` are each unique among captured rows, so a
    payment or order can carry a failed event before its successful capture.
    A payment id appears at most once per status.
    """
    __tablename__ = "payment_records"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(String(255), nullable=False, index=True)
    order_id = Column(String(255), nullable=True, index=True)
    status = Column(String(20), nullable=False, index=True)  # 'captured', 'failed'
    amount = Column(Integer, nullable=False)  # smallest currency unit (paise)
    currency = Column(String(3), nullable=False)
    item_type = Column(String(20), nullable=True)  # 'course', 'book', 'live_class'
    course_id = Column(Integer, nullable=True, index=True)
    book_id = Column(Integer, nullable=True, index=True)
    live_class_id = Column(Integer, nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    failure_reason = Column(Text, nullable=True)
    webhook_payload = Column(JSON, nullable=False)  # sanitized, no PII
    processed_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        UniqueConstraint('payment_id', 'status', name='uq_payment_records_payment_status'),
        Index(
            'uq_payment_records_captured_payment',
            'payment_id',
            unique=True,
            sqlite_where=text("status = 'captured'"),
            postgresql_where=text("status = 'captured'"),
        ),
        Index(
            'uq_payment_records_captured_order',
            'order_id',
            unique=True,
            sqlite_where=text("status = 'captured'"),
            postgresql_where=text("status = 'captured'"),
        ),
        Index('ix_payment_records_user_processed', 'user_id', 'processed_at'),
    )

    @property
    def item_id(self):
        return self.course_id or self.book_id or self.live_class_id
