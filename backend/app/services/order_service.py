"""Order issuing - creates gateway orders priced by the server, never the client"""
import logging
import math
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.config import settings, MAX_RECEIPT_LENGTH
from app.core.exceptions import InvalidAmount, ItemNotChargeable, ItemNotFound, ItemNotPublished
from app.core.logging import payment_logger as logger
from app.core.metrics import amount_tampering_counter, order_failures_counter, orders_created_counter
from app.core.security import log_security_event
from app.schemas.purchase import ItemRef, PurchaseIntent
from app.services.catalog_service import find_item_by_id
from app.services.gateway_client import PaymentGatewayClient


# Client/server price differences up to this are rounding, not tampering
AMOUNT_TOLERANCE = Decimal("0.01")


def to_minor_units(amount: Decimal) -> int:
    """Major currency units to the smallest unit (rupees -> paise), half-up"""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_receipt(receipt: Optional[str]) -> str:
    """Keep a short receipt, otherwise generate ``receipt_<8 digits>``"""
    if receipt and len(receipt) <= MAX_RECEIPT_LENGTH:
        return receipt
    return f"receipt_{str(int(time.time() * 1000))[-8:]}"


def _validate_amount(amount: Any) -> Decimal:
    if amount is None or isinstance(amount, bool):
        raise InvalidAmount()
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidAmount()
    if not math.isfinite(value) or value <= 0:
        raise InvalidAmount()
    return Decimal(str(value))


def _build_notes(
    client_notes: Optional[Dict[str, Any]],
    user_id: int,
    item_ref: Optional[ItemRef]
) -> Dict[str, str]:
    """Merge the client's notes with the server-controlled purchase intent"""
    notes = {str(k): str(v) for k, v in (client_notes or {}).items() if v is not None}
    # Clients must not be able to redirect the purchase to another item or user
    for key in ("userId", "itemType", "courseId", "bookId", "liveClassId"):
        notes.pop(key, None)

    if item_ref is not None:
        notes.update(PurchaseIntent(user_id=user_id, item=item_ref).to_notes())
    else:
        notes["userId"] = str(user_id)
    return notes


def create_order(
    gateway: PaymentGatewayClient,
    db: Session,
    user_id: int,
    amount: Any,
    currency: Optional[str] = None,
    receipt: Optional[str] = None,
    notes: Optional[Dict[str, Any]] = None,
    item_ref: Optional[ItemRef] = None,
    request: Optional[Request] = None
) -> Dict[str, Any]:
    """Create a gateway order for a purchase.

    Args:
        gateway: Injected gateway client (may be disabled)
        db: Database session
        user_id: Requesting user
        amount: Client-submitted amount in major units; only charged when no
            item is referenced
        currency: Defaults to PAYMENT_CURRENCY; forced to it for catalog items
        receipt: Optional receipt, replaced when longer than 40 chars
        notes: Opaque client notes; purchase keys are always server-set
        item_ref: Course, book or live class being bought

    Returns:
        Dict with id, amount (smallest unit), currency, receipt, status, created_at

    Raises:
        InvalidAmount, ItemNotFound, ItemNotPublished, ItemNotChargeable,
        ServiceUnavailable, GatewayError
    """
    try:
        charge_amount = _validate_amount(amount)
    except InvalidAmount:
        order_failures_counter.labels(reason="invalid_amount").inc()
        log_security_event(
            "PAYMENT_ORDER_REJECTED", request=request, level=logging.WARNING,
            userId=user_id, reason="INVALID_AMOUNT"
        )
        raise

    order_currency = (currency or settings.PAYMENT_CURRENCY).upper()

    if item_ref is not None:
        item = find_item_by_id(item_ref.item_type, item_ref.item_id, db)
        if item is None:
            order_failures_counter.labels(reason="item_not_found").inc()
            log_security_event(
                "PAYMENT_ORDER_REJECTED", request=request, level=logging.WARNING,
                userId=user_id, itemType=item_ref.item_type.value, itemId=item_ref.item_id,
                reason="ITEM_NOT_FOUND"
            )
            raise ItemNotFound(details={"item_type": item_ref.item_type.value, "item_id": item_ref.item_id})
        if not item.is_published:
            order_failures_counter.labels(reason="item_not_published").inc()
            raise ItemNotPublished(details={"item_type": item_ref.item_type.value, "item_id": item_ref.item_id})

        server_price = Decimal(str(item.price or 0))
        # The webhook reconciles against this price, so a free item can never be charged
        if server_price <= 0:
            order_failures_counter.labels(reason="item_not_chargeable").inc()
            log_security_event(
                "PAYMENT_ORDER_REJECTED", request=request, level=logging.WARNING,
                userId=user_id, itemType=item_ref.item_type.value, itemId=item_ref.item_id,
                clientAmount=str(charge_amount), reason="ITEM_NOT_CHARGEABLE"
            )
            raise ItemNotChargeable(details={"item_type": item_ref.item_type.value, "item_id": item_ref.item_id})

        if abs(server_price - charge_amount) > AMOUNT_TOLERANCE:
            amount_tampering_counter.inc()
            log_security_event(
                "PAYMENT_AMOUNT_TAMPERING", request=request, level=logging.WARNING,
                userId=user_id, itemType=item_ref.item_type.value, itemId=item_ref.item_id,
                clientAmount=str(charge_amount), serverPrice=str(server_price)
            )
        charge_amount = server_price

        if order_currency != settings.PAYMENT_CURRENCY:
            logger.warning(
                f"User {user_id} requested {order_currency} for {item_ref.item_type.value} "
                f"{item_ref.item_id}; catalog items are sold in {settings.PAYMENT_CURRENCY}"
            )
            order_currency = settings.PAYMENT_CURRENCY

    amount_minor = to_minor_units(charge_amount)
    order_receipt = build_receipt(receipt)
    order_notes = _build_notes(notes, user_id, item_ref)

    order = gateway.create_order(
        amount=amount_minor,
        currency=order_currency,
        receipt=order_receipt,
        notes=order_notes
    )

    orders_created_counter.labels(item_type=item_ref.item_type.value if item_ref else "none").inc()
    log_security_event(
        "PAYMENT_ORDER_CREATED", request=request,
        userId=user_id,
        orderId=order.get("id"),
        amount=amount_minor,
        currency=order_currency,
        itemType=item_ref.item_type.value if item_ref else None,
        itemId=item_ref.item_id if item_ref else None
    )
    logger.info(f"Created order {order.get('id')} for user {user_id}: {amount_minor} {order_currency}")

    return {
        "id": order.get("id"),
        "amount": order.get("amount", amount_minor),
        "currency": order.get("currency", order_currency),
        "receipt": order.get("receipt", order_receipt),
        "status": order.get("status"),
        "created_at": order.get("created_at"),
    }
