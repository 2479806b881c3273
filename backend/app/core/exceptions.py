"""Payment error hierarchy

Every error carries a machine-readable ``error_code`` and the HTTP status it
maps to. ``message`` is what the client sees and must stay generic; anything
useful for debugging goes into ``details``, which is only ever logged.
"""
from typing import Optional, Dict, Any


class PaymentError(Exception):
    """Base class for all payment subsystem errors"""

    error_code = "PAYMENT_ERROR"
    status_code = 500
    message = "Payment processing failed"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        if message is not None:
            self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self) -> Dict[str, Any]:
        return {"success": False, "error": self.error_code, "message": self.message}


# --- Order issuing ---

class InvalidAmount(PaymentError):
    error_code = "INVALID_AMOUNT"
    status_code = 400
    message = "Valid amount is required (must be greater than 0)"


class InvalidItemReference(PaymentError):
    error_code = "INVALID_ITEM_REFERENCE"
    status_code = 400
    message = "Exactly one item reference matching itemType is required"


class ItemNotFound(PaymentError):
    error_code = "ITEM_NOT_FOUND"
    status_code = 404
    message = "Item not found"


class ItemNotPublished(PaymentError):
    error_code = "ITEM_NOT_PUBLISHED"
    status_code = 400
    message = "Item is not available for purchase"


class ItemNotChargeable(PaymentError):
    """Catalog item has no positive price to charge"""
    error_code = "ITEM_NOT_CHARGEABLE"
    status_code = 400
    message = "Item is not available for purchase"


# --- Gateway availability ---

class ServiceUnavailable(PaymentError):
    """Gateway client has no credentials"""
    error_code = "SERVICE_UNAVAILABLE"
    status_code = 503
    message = "Payment service not available. Please contact support."


class FeatureDisabled(ServiceUnavailable):
    error_code = "FEATURE_DISABLED"
    message = "Payment service is currently disabled"


class GatewayError(PaymentError):
    error_code = "PAYMENT_GATEWAY_ERROR"
    status_code = 500
    message = "Payment gateway request failed. Please try again or contact support."


# --- Verification ---

class SignatureInvalid(PaymentError):
    error_code = "SIGNATURE_INVALID"
    status_code = 400
    message = "Payment verification failed"


class MissingVerificationData(PaymentError):
    error_code = "MISSING_VERIFICATION_DATA"
    status_code = 400
    message = "Payment verification data is required"


# --- Webhook reconciliation ---

class InvalidPayload(PaymentError):
    error_code = "INVALID_PAYLOAD"
    status_code = 400
    message = "Invalid webhook payload"


class MissingPaymentNotes(PaymentError):
    error_code = "MISSING_PAYMENT_NOTES"
    status_code = 400
    message = "Missing required information in payment notes"


class UserNotFound(PaymentError):
    error_code = "USER_NOT_FOUND"
    status_code = 404
    message = "Payment could not be reconciled"


class AmountMismatch(PaymentError):
    error_code = "AMOUNT_MISMATCH"
    status_code = 400
    message = "Payment amount does not match item price"


class CurrencyMismatch(PaymentError):
    error_code = "CURRENCY_MISMATCH"
    status_code = 400
    message = "Payment currency is not supported"
