"""Database helper functions for the payment ledger"""
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import and_, case, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.payment_record import PaymentRecord

logger = logging.getLogger(__name__)


def is_payment_processed(
    payment_id: Optional[str],
    order_id: Optional[str],
    db: Session,
    captured_only: bool = False
) -> Optional[PaymentRecord]:
    """Find the ledger row for a payment, matching on either gateway id.

    An order id only matches a captured row, so a failed attempt on an order
    does not hide the later successful capture of that same order. With
    ``captured_only`` the payment id is held to the same rule: the gateway can
    report a payment as failed and capture it later (late authorization).
    Captured rows are returned ahead of failed ones.
    """
    conditions = []
    if payment_id:
        if captured_only:
            conditions.append(and_(
                PaymentRecord.payment_id == payment_id,
                PaymentRecord.status == "captured"
            ))
        else:
            conditions.append(PaymentRecord.payment_id == payment_id)
    if order_id:
        conditions.append(and_(
            PaymentRecord.order_id == order_id,
            PaymentRecord.status == "captured"
        ))
    if not conditions:
        return None

    return (
        db.query(PaymentRecord)
        .filter(or_(*conditions))
        .order_by(case((PaymentRecord.status == "captured", 0), else_=1), PaymentRecord.id)
        .first()
    )


def insert_payment_record(record: PaymentRecord, db: Session) -> Tuple[PaymentRecord, bool]:
    """Insert a ledger row, or return the row that beat us to it.

    The unique indexes (one captured row per payment id and per order id, one
    row per payment id and status) are the real guard against duplicate
    deliveries racing each other; this turns the conflict into an idempotent
    outcome. Returns (record, created).
    """
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = is_payment_processed(
            record.payment_id, record.order_id, db,
            captured_only=record.status == "captured"
        )
        if existing is None:
            # Conflict on something other than the idempotency keys
            raise
        logger.info(f"Payment {record.payment_id} inserted concurrently, using existing record {existing.id}")
        return existing, False

    db.refresh(record)
    return record, True


def get_user_payment_records(user_id: int, db: Session, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    """Paginated ledger rows for one user, newest first"""
    query = db.query(PaymentRecord).filter(PaymentRecord.user_id == user_id)
    total = query.count()
    records = (
        query.order_by(PaymentRecord.processed_at.desc(), PaymentRecord.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": [serialize_payment_record(r) for r in records],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": (total + limit - 1) // limit
        }
    }


def serialize_payment_record(record: PaymentRecord) -> Dict[str, Any]:
    """Client-facing view of a ledger row (no webhook payload)"""
    return {
        "paymentId": record.payment_id,
        "orderId": record.order_id,
        "status": record.status,
        "amount": record.amount,
        "currency": record.currency,
        "itemType": record.item_type,
        "itemId": record.item_id,
        "processedAt": record.processed_at.isoformat() if record.processed_at else None,
    }
