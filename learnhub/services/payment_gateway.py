# learnhub/services/payment_gateway.py - Razorpay REST client (orders, payment lookup, signatures)
import asyncio
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import httpx

from learnhub.core.config import settings
from learnhub.core.errors import ExternalServiceError, GatewayNotConfiguredError, GATEWAY_NOT_CONFIGURED
from learnhub.models.base import MONEY_QUANT

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def to_minor_units(amount: Decimal) -> int:
    """Gateway amounts are in the smallest currency unit (paise, cents)"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(MONEY_QUANT)


@dataclass
class PaymentDetails:
    payment_id: str
    order_id: Optional[str]
    status: str  # created|authorized|captured|refunded|failed
    amount: Decimal
    currency: str
    method: Optional[str] = None
    notes: Dict[str, Any] = field(default_factory=dict)
    error_description: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: Dict[str, Any]) -> "PaymentDetails":
        notes = entity.get("notes") or {}
        return cls(
            payment_id=entity["id"],
            order_id=entity.get("order_id"),
            status=entity.get("status", "created"),
            amount=from_minor_units(entity.get("amount", 0)),
            currency=(entity.get("currency") or "").upper(),
            method=entity.get("method"),
            # Razorpay returns [] for empty notes
            notes=notes if isinstance(notes, dict) else {},
            error_description=entity.get("error_description"),
        )


class RazorpayClient:
    """Thin async client for the Razorpay REST API"""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.RAZORPAY_WEBHOOK_SECRET
        self.base_url = (base_url or settings.GATEWAY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self.max_retries = settings.GATEWAY_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.GATEWAY_RETRY_DELAY if retry_delay is None else retry_delay
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _require_configured(self):
        if not self.configured:
            raise GatewayNotConfiguredError(
                "Payment gateway is not configured",
                code=GATEWAY_NOT_CONFIGURED,
            )

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Call the gateway, retrying timeouts, transport errors, 429 and 5xx with exponential backoff"""
        self._require_configured()
        url = f"{self.base_url}{path}"
        attempts = self.max_retries + 1
        last_error: Optional[str] = None

        async with httpx.AsyncClient(
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            for attempt in range(1, attempts + 1):
                try:
                    response = await client.request(method, url, json=json)
                    if response.status_code in RETRYABLE_STATUS_CODES:
                        last_error = f"HTTP {response.status_code}"
                    else:
                        response.raise_for_status()
                        return response.json()
                except httpx.HTTPStatusError as e:
                    description = _error_description(e.response)
                    logger.error(f"Gateway rejected {method} {path}: {e.response.status_code} {description}")
                    raise ExternalServiceError(
                        f"Payment gateway rejected the request: {description}",
                        details={"status_code": e.response.status_code, "path": path},
                    )
                except (httpx.TimeoutException, httpx.TransportError) as e:
                    last_error = f"{type(e).__name__}: {e}"

                if attempt < attempts:
                    delay = self.retry_delay * (2 ** (attempt - 1))
                    logger.warning(f"Gateway {method} {path} failed ({last_error}), retrying in {delay:.2f}s")
                    await asyncio.sleep(delay)

        logger.error(f"Gateway {method} {path} failed after {attempts} attempts: {last_error}")
        raise ExternalServiceError(
            "Payment gateway unavailable",
            details={"path": path, "attempts": attempts, "last_error": last_error},
        )

    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        payload = {
            "amount": to_minor_units(amount),
            "currency": currency.upper(),
            "receipt": receipt[:40],
            "notes": notes or {},
            "payment_capture": 1,
        }
        order = await self._request("POST", "/orders", json=payload)
        logger.info(f"Gateway order {order.get('id')} created for {amount} {currency} ({receipt})")
        return order

    async def get_payment_details(self, payment_id: str) -> PaymentDetails:
        entity = await self._request("GET", f"/payments/{payment_id}")
        return PaymentDetails.from_entity(entity)

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Checkout signature: HMAC-SHA256 of 'order_id|payment_id' with the key secret"""
        self._require_configured()
        expected = hmac.new(
            self.key_secret.encode(),
            f"{order_id}|{payment_id}".encode(),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature or "")

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        """Webhook signature: HMAC-SHA256 of the raw body with the webhook secret"""
        if not self.webhook_secret:
            raise GatewayNotConfiguredError(
                "Webhook secret is not configured",
                code=GATEWAY_NOT_CONFIGURED,
            )
        expected = hmac.new(self.webhook_secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")


def _error_description(response: httpx.Response) -> str:
    try:
        return response.json().get("error", {}).get("description") or response.text
    except (ValueError, AttributeError):
        return response.text


def get_gateway_client() -> RazorpayClient:
    """FastAPI dependency; overridden in tests"""
    return RazorpayClient()
