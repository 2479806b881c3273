"""Read-only payment status for the client after checkout

The client-side confirmation is never authoritative. This only reports what
the ledger (written by the webhook) or the gateway currently says; it does not
insert records or grant access.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.exceptions import MissingVerificationData, ServiceUnavailable, SignatureInvalid
from app.core.logging import payment_logger as logger
from app.core.metrics import signature_failures_counter
from app.core.security import log_security_event
from app.core.signatures import verify_payment_signature
from app.db.helpers import is_payment_processed
from app.services.gateway_client import PaymentGatewayClient


def get_payment_status(
    order_id: Optional[str],
    payment_id: Optional[str],
    signature: Optional[str],
    gateway: PaymentGatewayClient,
    db: Session,
    user_id: Optional[int] = None,
    request: Optional[Request] = None
) -> Dict[str, Any]:
    """Status hint for a checkout confirmation.

    A ledger hit is final (``processed: True``). Otherwise the gateway is asked
    directly and the answer is marked ``isTemporary``; the webhook may land at
    any later point and is the only thing that finalizes a purchase.
    """
    if not order_id or not payment_id or not signature:
        raise MissingVerificationData()

    if not gateway.enabled:
        raise ServiceUnavailable()

    if not verify_payment_signature(order_id, payment_id, signature, gateway.key_secret):
        signature_failures_counter.labels(source="checkout").inc()
        log_security_event(
            "PAYMENT_SIGNATURE_INVALID", request=request, level=logging.WARNING,
            userId=user_id, orderId=order_id, paymentId=payment_id
        )
        raise SignatureInvalid()

    record = is_payment_processed(payment_id, order_id, db)
    if record is not None:
        return {
            "orderId": record.order_id,
            "paymentId": record.payment_id,
            "status": record.status,
            "amount": record.amount,
            "currency": record.currency,
            "processed": True,
            "isTemporary": False,
            "processedAt": record.processed_at.isoformat() if record.processed_at else None,
        }

    payment = gateway.fetch_payment(payment_id)
    logger.info(f"Payment {payment_id} not reconciled yet, gateway status {payment.get('status')}")
    return {
        "orderId": order_id,
        "paymentId": payment_id,
        "status": payment.get("status"),
        "amount": payment.get("amount"),
        "currency": payment.get("currency"),
        "processed": False,
        "isTemporary": True,
        "processedAt": None,
    }
