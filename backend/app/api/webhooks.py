"""Payment gateway webhook routes"""
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.api.payments import require_payments_enabled
from app.core.config import settings, RAZORPAY_SIGNATURE_HEADER
from app.core.exceptions import SignatureInvalid
from app.core.security import check_webhook_rate_limit
from app.db.session import get_db
from app.services.webhook_service import handle_webhook

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post(
    "/payment",
    dependencies=[Depends(require_payments_enabled), Depends(check_webhook_rate_limit)]
)
async def payment_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Razorpay webhook events

    Note: The body must reach this handler as raw bytes; the signature is
    computed over them before anything is parsed. Every outcome except a bad
    signature is answered with 200 so the gateway stops retrying.
    """
    payload = await request.body()
    signature = request.headers.get(RAZORPAY_SIGNATURE_HEADER)

    try:
        # Ledger writes are blocking; keep them off the event loop
        result = await run_in_threadpool(handle_webhook, payload, signature, db, request=request)
    except SignatureInvalid:
        raise
    except Exception as e:
        # Unexpected error - log but return 200 to prevent retries
        logger.error(f"Unexpected error processing webhook: {e}", exc_info=True)
        return {"success": True, "processed": False, "error": "PROCESSING_ERROR"}

    return result.to_response()


@router.get("/payment/health")
def webhook_health():
    """Liveness of the webhook route"""
    return {
        "success": True,
        "status": "ok",
        "enabled": settings.ENABLE_RAZORPAY,
        "webhookSecretConfigured": bool(settings.RAZORPAY_WEBHOOK_SECRET),
    }
