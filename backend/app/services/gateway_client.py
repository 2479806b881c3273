"""Razorpay REST client

One instance is built at startup from settings and handed to the order issuer
and the status endpoint. Without API credentials the client is *disabled*:
it still exists, but every call raises ServiceUnavailable so callers answer
503 instead of crashing.
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from app.core.config import settings
from app.core.exceptions import GatewayError, ServiceUnavailable

logger = logging.getLogger(__name__)


class PaymentGatewayClient:
    """Thin wrapper over the Razorpay orders/payments API"""

    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.key_id = key_id or ""
        self._key_secret = key_secret or ""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.Client] = None

    @classmethod
    def from_settings(cls) -> "PaymentGatewayClient":
        client = cls(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            base_url=settings.RAZORPAY_API_BASE,
            timeout=settings.RAZORPAY_TIMEOUT,
        )
        if client.enabled:
            logger.info("Razorpay client initialized")
        else:
            logger.warning("Razorpay credentials not configured - payment gateway disabled")
        return client

    @property
    def enabled(self) -> bool:
        return bool(self.key_id and self._key_secret)

    @property
    def key_secret(self) -> str:
        """API secret, also the HMAC key for checkout confirmation signatures"""
        return self._key_secret

    def _client(self) -> httpx.Client:
        if not self.enabled:
            raise ServiceUnavailable()
        if self._http is None:
            self._http = httpx.Client(
                base_url=self.base_url,
                auth=(self.key_id, self._key_secret),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        http = self._client()
        try:
            response = http.request(method, path, json=json)
        except httpx.TimeoutException as e:
            logger.error(f"Razorpay {method} {path} timed out after {self.timeout}s")
            raise GatewayError(details={"path": path, "error": "timeout"}) from e
        except httpx.HTTPError as e:
            logger.error(f"Razorpay {method} {path} transport error: {e}")
            raise GatewayError(details={"path": path, "error": str(e)}) from e

        if response.status_code >= 400:
            try:
                error = response.json().get("error") or {}
            except (ValueError, AttributeError):
                error = {"description": response.text[:200]}
            logger.error(
                f"Razorpay {method} {path} failed with {response.status_code}: "
                f"{error.get('code')} {error.get('description')}"
            )
            raise GatewayError(details={
                "path": path,
                "status_code": response.status_code,
                "gateway_error": error.get("code"),
            })

        return response.json()

    def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """Create an order; ``amount`` is in the smallest currency unit"""
        return self._request("POST", "/orders", json={
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        })

    def fetch_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/orders/{quote(order_id, safe='')}")

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/payments/{quote(payment_id, safe='')}")

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None
