"""Payment API routes"""
import logging
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import FeatureDisabled, ServiceUnavailable
from app.core.security import require_admin, require_auth
from app.db.helpers import get_user_payment_records
from app.db.session import get_db
from app.models.user import User
from app.schemas.payments import CreateOrderRequest, VerifyPaymentRequest
from app.schemas.purchase import ItemRef
from app.services.gateway_client import PaymentGatewayClient
from app.services.order_service import create_order
from app.services.payment_status_service import get_payment_status

router = APIRouter(prefix="/api/payments", tags=["payments"])
orders_router = APIRouter(prefix="/api/orders", tags=["payments"])
logger = logging.getLogger(__name__)


def require_payments_enabled() -> None:
    """Dependency: 503 unless ENABLE_RAZORPAY is on"""
    if not settings.ENABLE_RAZORPAY:
        raise FeatureDisabled()


def get_gateway(request: Request) -> PaymentGatewayClient:
    """Dependency: the gateway client built at startup"""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise ServiceUnavailable()
    return gateway


@router.get("/config", dependencies=[Depends(require_payments_enabled)])
def get_payment_config(gateway: PaymentGatewayClient = Depends(get_gateway)):
    """Public checkout configuration (never includes the key secret)"""
    if not gateway.enabled:
        raise ServiceUnavailable()
    return {
        "success": True,
        "data": {
            "keyId": gateway.key_id,
            "currency": settings.PAYMENT_CURRENCY,
            "name": settings.PAYMENT_MERCHANT_NAME,
            "description": settings.PAYMENT_DESCRIPTION,
        }
    }


@router.get("/history")
def get_payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """The caller's own reconciled payments, newest first"""
    return {"success": True, **get_user_payment_records(user_id, db, page=page, limit=limit)}


@router.post("/order", dependencies=[Depends(require_payments_enabled)])
def create_payment_order(
    request_data: CreateOrderRequest,
    request: Request,
    user_id: int = Depends(require_auth),
    gateway: PaymentGatewayClient = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Create a gateway order; catalog items are charged at their server price"""
    item_ref = ItemRef.from_ids(
        request_data.item_type,
        course_id=request_data.course_id,
        book_id=request_data.book_id,
        live_class_id=request_data.live_class_id
    )
    order = create_order(
        gateway,
        db,
        user_id,
        request_data.amount,
        currency=request_data.currency,
        receipt=request_data.receipt,
        notes=request_data.notes,
        item_ref=item_ref,
        request=request
    )
    return {"success": True, "message": "Order created successfully", "data": order}


@router.post("/verify", dependencies=[Depends(require_payments_enabled)])
def verify_payment(
    request_data: VerifyPaymentRequest,
    request: Request,
    user_id: int = Depends(require_auth),
    gateway: PaymentGatewayClient = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Status hint after checkout. Access is only granted by the webhook."""
    status = get_payment_status(
        request_data.razorpay_order_id,
        request_data.razorpay_payment_id,
        request_data.razorpay_signature,
        gateway,
        db,
        user_id=user_id,
        request=request
    )
    message = "Payment verified successfully" if status["processed"] else "Payment is being processed"
    return {"success": True, "message": message, "data": status}


@router.get("/{payment_id}", dependencies=[Depends(require_payments_enabled)])
def get_payment_details(
    payment_id: str,
    admin_user: User = Depends(require_admin),
    gateway: PaymentGatewayClient = Depends(get_gateway)
):
    """Gateway payment lookup (admin only)"""
    return {"success": True, "data": gateway.fetch_payment(payment_id)}


@orders_router.get("/{order_id}", dependencies=[Depends(require_payments_enabled)])
def get_order_details(
    order_id: str,
    admin_user: User = Depends(require_admin),
    gateway: PaymentGatewayClient = Depends(get_gateway)
):
    """Gateway order lookup (admin only)"""
    return {"success": True, "data": gateway.fetch_order(order_id)}
