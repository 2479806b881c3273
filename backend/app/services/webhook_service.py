"""Webhook reconciliation - the system of record for payments

Gateway events are authenticated against the raw body, parsed, validated and
written to the append-only payment ledger. Entitlement is granted once per
captured payment. Anything the gateway sends that we cannot reconcile is
logged and acknowledged; only a bad signature is refused.
"""
import copy
import json
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    AmountMismatch,
    CurrencyMismatch,
    InvalidPayload,
    ItemNotFound,
    MissingPaymentNotes,
    PaymentError,
    SignatureInvalid,
    UserNotFound,
)
from app.core.logging import webhook_logger as logger
from app.core.metrics import entitlement_failures_counter, signature_failures_counter, webhook_events_counter
from app.core.security import log_security_event
from app.core.signatures import verify_signature
from app.db.helpers import insert_payment_record, is_payment_processed
from app.models.payment_record import PaymentRecord
from app.schemas.purchase import PurchaseIntent
from app.services.catalog_service import find_item_by_id, grant_access
from app.services.order_service import to_minor_units
from app.services.user_service import get_user_by_id


# Stripped from payload.payment.entity before the event is persisted
PII_FIELDS = ("card_id", "bank", "wallet", "vpa", "email", "contact")

HANDLED_EVENTS = ("payment.captured", "payment.failed", "order.paid")


@dataclass
class WebhookResult:
    """Outcome of one delivery; always acknowledged with HTTP 200"""
    event_type: Optional[str] = None
    processed: bool = False
    already_processed: bool = False
    entitlement_granted: bool = False
    payment_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def outcome(self) -> str:
        if self.error:
            return "error"
        if self.already_processed:
            return "duplicate"
        return "processed" if self.processed else "ignored"

    def to_response(self) -> Dict[str, Any]:
        response = {
            "success": True,
            "event": self.event_type,
            "processed": self.processed,
            "alreadyProcessed": self.already_processed,
        }
        if self.error:
            response["error"] = self.error
        return response


def sanitize_webhook_payload(event: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy of the event without contact or instrument details"""
    sanitized = copy.deepcopy(event)
    payload = sanitized.get("payload")
    payment = payload.get("payment") if isinstance(payload, dict) else None
    entity = payment.get("entity") if isinstance(payment, dict) else None
    if isinstance(entity, dict):
        for field in PII_FIELDS:
            entity.pop(field, None)
    return sanitized


def _payment_entity(event: Dict[str, Any]) -> Dict[str, Any]:
    try:
        entity = event["payload"]["payment"]["entity"]
    except (KeyError, TypeError):
        raise InvalidPayload(details={"reason": "missing payload.payment.entity"})
    if not isinstance(entity, dict) or not entity.get("id"):
        raise InvalidPayload(details={"reason": "payment entity without id"})
    return entity


def _amount(entity: Dict[str, Any]) -> int:
    """Amount in the smallest unit; fractional values are refused, not truncated"""
    value = entity.get("amount")
    if value is None or isinstance(value, bool):
        raise InvalidPayload(details={"amount": value})
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidPayload(details={"amount": value})
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidPayload(details={"amount": value})


def _failure_reason(entity: Dict[str, Any]) -> Optional[str]:
    code = entity.get("error_code")
    description = entity.get("error_description")
    source = entity.get("error_source")
    if not (code or description or source):
        return None
    return f"{code}: {description} ({source})"


def process_payment_captured(
    event: Dict[str, Any],
    db: Session,
    request: Optional[Request] = None
) -> WebhookResult:
    """Validate a captured payment, record it and grant the purchased item.

    Raises MissingPaymentNotes, UserNotFound, ItemNotFound, AmountMismatch,
    CurrencyMismatch or InvalidPayload; nothing is written when it does.
    """
    entity = _payment_entity(event)
    payment_id = entity["id"]
    order_id = entity.get("order_id")
    amount = _amount(entity)
    currency = str(entity.get("currency") or "").upper()

    intent = PurchaseIntent.from_notes(entity.get("notes"))
    item_ref = intent.item

    if get_user_by_id(intent.user_id, db) is None:
        raise UserNotFound(details={"user_id": intent.user_id, "payment_id": payment_id})

    item = find_item_by_id(item_ref.item_type, item_ref.item_id, db)
    if item is None:
        raise ItemNotFound(details={"item_type": item_ref.item_type.value, "item_id": item_ref.item_id})

    expected_amount = to_minor_units(Decimal(str(item.price or 0)))
    if amount != expected_amount:
        raise AmountMismatch(details={"expected": expected_amount, "received": amount, "payment_id": payment_id})

    if currency != settings.PAYMENT_CURRENCY:
        raise CurrencyMismatch(details={"expected": settings.PAYMENT_CURRENCY, "received": currency})

    # A failed row for this payment id does not count; the capture may come later
    existing = is_payment_processed(payment_id, order_id, db, captured_only=True)
    if existing is not None:
        logger.info(f"Payment {payment_id} already processed (record {existing.id})")
        return WebhookResult(payment_id=payment_id, already_processed=True)

    record = PaymentRecord(
        payment_id=payment_id,
        order_id=order_id,
        status="captured",
        amount=amount,
        currency=currency,
        item_type=item_ref.item_type.value,
        user_id=intent.user_id,
        webhook_payload=sanitize_webhook_payload(event),
    )
    setattr(record, item_ref.item_type.record_column, item_ref.item_id)

    record, created = insert_payment_record(record, db)
    if not created:
        # Lost the race against a concurrent delivery of the same payment
        return WebhookResult(payment_id=payment_id, already_processed=True)

    logger.info(f"Recorded captured payment {payment_id} for user {intent.user_id}")

    # The payment stays recorded even when access cannot be granted
    try:
        granted = grant_access(item_ref.item_type, item_ref.item_id, intent.user_id, db, payment_id=payment_id)
    except Exception as e:
        db.rollback()
        entitlement_failures_counter.inc()
        logger.error(f"Entitlement grant failed for payment {payment_id}: {e}", exc_info=True)
        log_security_event(
            "WEBHOOK_ENROLLMENT_FAILED", request=request, level=logging.ERROR,
            userId=intent.user_id, paymentId=payment_id, orderId=order_id,
            itemType=item_ref.item_type.value, itemId=item_ref.item_id,
            error=type(e).__name__
        )
        return WebhookResult(payment_id=payment_id, processed=True, entitlement_granted=False)

    log_security_event(
        "PAYMENT_CAPTURED", request=request,
        userId=intent.user_id, paymentId=payment_id, orderId=order_id,
        amount=amount, currency=currency,
        itemType=item_ref.item_type.value, itemId=item_ref.item_id
    )
    return WebhookResult(payment_id=payment_id, processed=True, entitlement_granted=granted)


def process_payment_failed(
    event: Dict[str, Any],
    db: Session,
    request: Optional[Request] = None
) -> WebhookResult:
    """Record a failed payment attempt; notes are used when they are usable"""
    entity = _payment_entity(event)
    payment_id = entity["id"]
    order_id = entity.get("order_id")

    existing = is_payment_processed(payment_id, order_id, db)
    if existing is not None:
        logger.info(f"Failed payment {payment_id} already recorded (record {existing.id})")
        return WebhookResult(payment_id=payment_id, already_processed=True)

    try:
        intent = PurchaseIntent.from_notes(entity.get("notes"))
    except MissingPaymentNotes:
        intent = None

    user_id = None
    if intent is not None and get_user_by_id(intent.user_id, db) is not None:
        user_id = intent.user_id

    try:
        amount = _amount(entity)
    except InvalidPayload:
        amount = 0

    record = PaymentRecord(
        payment_id=payment_id,
        order_id=order_id,
        status="failed",
        amount=amount,
        currency=str(entity.get("currency") or settings.PAYMENT_CURRENCY).upper()[:3],
        item_type=intent.item.item_type.value if intent else None,
        user_id=user_id,
        failure_reason=_failure_reason(entity),
        webhook_payload=sanitize_webhook_payload(event),
    )
    if intent is not None:
        setattr(record, intent.item.item_type.record_column, intent.item.item_id)

    record, created = insert_payment_record(record, db)
    if not created:
        return WebhookResult(payment_id=payment_id, already_processed=True)

    log_security_event(
        "PAYMENT_FAILED", request=request, level=logging.WARNING,
        userId=user_id, paymentId=payment_id, orderId=order_id,
        reason=record.failure_reason
    )
    return WebhookResult(payment_id=payment_id, processed=True)


def process_order_paid(event: Dict[str, Any], request: Optional[Request] = None) -> WebhookResult:
    """Log only; payment.captured is the event that gets reconciled"""
    try:
        order_id = event["payload"]["order"]["entity"]["id"]
    except (KeyError, TypeError):
        order_id = None
    log_security_event("WEBHOOK_ORDER_PAID_RECEIVED", request=request, orderId=order_id)
    return WebhookResult()


def handle_webhook(
    raw_body: bytes,
    signature: Optional[str],
    db: Session,
    request: Optional[Request] = None
) -> WebhookResult:
    """Authenticate, parse and dispatch one gateway delivery.

    Args:
        raw_body: Request body exactly as received (never pre-parsed)
        signature: Value of the x-razorpay-signature header
        db: Database session

    Returns:
        WebhookResult to acknowledge with HTTP 200

    Raises:
        SignatureInvalid: The delivery did not come from the gateway
    """
    started = time.monotonic()

    if not verify_signature(raw_body, signature, settings.RAZORPAY_WEBHOOK_SECRET):
        signature_failures_counter.labels(source="webhook").inc()
        log_security_event(
            "WEBHOOK_SIGNATURE_INVALID", request=request, level=logging.WARNING,
            hasSignature=bool(signature),
            secretConfigured=bool(settings.RAZORPAY_WEBHOOK_SECRET)
        )
        raise SignatureInvalid()

    # Only authenticated bytes are parsed
    try:
        event = json.loads(raw_body)
    except ValueError:
        logger.error("Webhook body is not valid JSON")
        result = WebhookResult(error=InvalidPayload.error_code)
        webhook_events_counter.labels(event_type="unknown", outcome=result.outcome).inc()
        return result

    if not isinstance(event, dict):
        result = WebhookResult(error=InvalidPayload.error_code)
        webhook_events_counter.labels(event_type="unknown", outcome=result.outcome).inc()
        return result

    event_type = event.get("event")
    if not event_type or not isinstance(event_type, str):
        logger.error("Webhook event type missing")
        result = WebhookResult(error="MISSING_EVENT_TYPE")
        webhook_events_counter.labels(event_type="unknown", outcome=result.outcome).inc()
        return result

    try:
        if event_type == "payment.captured":
            result = process_payment_captured(event, db, request)
        elif event_type == "payment.failed":
            result = process_payment_failed(event, db, request)
        elif event_type == "order.paid":
            result = process_order_paid(event, request)
        else:
            logger.info(f"Unhandled webhook event type: {event_type}")
            log_security_event("WEBHOOK_UNKNOWN_EVENT", request=request, webhookEvent=event_type)
            result = WebhookResult()
    except PaymentError as e:
        # The gateway cannot fix these by retrying, so they are acknowledged
        logger.warning(f"Webhook {event_type} rejected: {e.error_code} {e.details}")
        log_security_event(
            "WEBHOOK_VALIDATION_FAILED", request=request, level=logging.WARNING,
            webhookEvent=event_type, error=e.error_code
        )
        result = WebhookResult(error=e.error_code)
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error processing webhook {event_type}: {e}", exc_info=True)
        log_security_event(
            "WEBHOOK_PROCESSING_ERROR", request=request, level=logging.ERROR,
            webhookEvent=event_type, error=type(e).__name__
        )
        result = WebhookResult(error="PROCESSING_ERROR")

    result.event_type = event_type
    label = event_type if event_type in HANDLED_EVENTS else "other"
    webhook_events_counter.labels(event_type=label, outcome=result.outcome).inc()
    log_security_event(
        "WEBHOOK_PROCESSED", request=request,
        webhookEvent=event_type,
        paymentId=result.payment_id,
        outcome=result.outcome,
        processingTimeMs=round((time.monotonic() - started) * 1000, 2)
    )
    return result
