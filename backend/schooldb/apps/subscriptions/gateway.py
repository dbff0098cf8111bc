# backend/schooldb/apps/subscriptions/gateway.py
"""
PesaPal (v3) payment gateway client.

The client owns its caches (auth token, registered IPN id) and takes an
injectable clock and transport, so tests can drive token expiry and fake
the gateway without touching module state. Every failure (transport,
non-2xx, unparsable body, gateway-reported error) surfaces as GatewayError.

Concurrent callers may both refresh an expired token; token requests have
no side effects on the gateway, so the duplicate exchange is harmless.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

from schooldb.clock import Clock, utcnow
from schooldb.errors import GatewayError

logger = logging.getLogger(__name__)

PESAPAL_BASE_URL = os.getenv("PESAPAL_BASE_URL", "https://pay.pesapal.com/v3")
PESAPAL_CONSUMER_KEY = os.getenv("PESAPAL_CONSUMER_KEY", "")
PESAPAL_CONSUMER_SECRET = os.getenv("PESAPAL_CONSUMER_SECRET", "")
PESAPAL_IPN_CALLBACK_URL = os.getenv(
    "PESAPAL_IPN_CALLBACK_URL", "http://localhost:5000/api/v1/pesapal/ipn"
)
PESAPAL_TIMEOUT_SEC = float(os.getenv("PESAPAL_TIMEOUT_SEC", "30"))
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")

TOKEN_SAFETY_MARGIN = timedelta(seconds=60)
TOKEN_FALLBACK_LIFETIME = timedelta(minutes=5)

STATUS_INVALID = 0
STATUS_COMPLETED = 1
STATUS_FAILED = 2
STATUS_REVERSED = 3

# (method, url, headers, body, timeout) -> (status code, response text)
Transport = Callable[[str, str, Dict[str, str], Optional[bytes], float], Tuple[int, str]]


def _http_request(
    method: str,
    url: str,
    headers: Dict[str, str],
    body: Optional[bytes],
    timeout: float,
) -> Tuple[int, str]:
    req = urllib.request.Request(url, data=body, method=method)
    for name, value in headers.items():
        req.add_header(name, value)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return resp.status, resp.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode("utf-8", errors="replace")


_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_gateway_datetime(value: Any) -> Optional[datetime]:
    """
    Parse timestamps like '2024-05-01T10:15:30.5177702Z'.

    The gateway sends 7 fractional digits, which `fromisoformat` rejects on
    older interpreters, so the fraction is cut to microseconds first. Naive
    values are taken as UTC.
    """
    if not value or not isinstance(value, str):
        return None
    text = _FRACTION_RE.sub(r"\1", value.strip())
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class BillingContact:
    email: str = ""
    phone: str = ""
    first_name: str = ""
    last_name: str = ""
    country_code: str = "UG"


@dataclass(frozen=True)
class OrderRequest:
    order_id: str
    amount: Decimal
    currency: str
    description: str
    contact: BillingContact
    callback_url: Optional[str] = None


@dataclass(frozen=True)
class SubmittedOrder:
    tracking_id: str
    redirect_url: str
    merchant_reference: Optional[str] = None


@dataclass(frozen=True)
class TransactionStatus:
    status_code: int
    description: Optional[str] = None
    payment_method: Optional[str] = None
    merchant_reference: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    message: Optional[str] = None


class PaymentGatewayClient:
    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        consumer_key: Optional[str] = None,
        consumer_secret: Optional[str] = None,
        ipn_url: Optional[str] = None,
        callback_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[Transport] = None,
        clock: Optional[Clock] = None,
    ):
        self.base_url = (base_url or PESAPAL_BASE_URL).rstrip("/")
        self.consumer_key = PESAPAL_CONSUMER_KEY if consumer_key is None else consumer_key
        self.consumer_secret = PESAPAL_CONSUMER_SECRET if consumer_secret is None else consumer_secret
        self.ipn_url = ipn_url or PESAPAL_IPN_CALLBACK_URL
        self.callback_url = callback_url or f"{CLIENT_URL.rstrip('/')}/payment/callback"
        self.timeout = PESAPAL_TIMEOUT_SEC if timeout is None else timeout
        self._transport = transport or _http_request
        self._clock = clock or utcnow
        # (token, expires_at), swapped as a whole
        self._token_cache: Optional[Tuple[str, datetime]] = None
        self._notification_id: Optional[str] = None

    def reset(self) -> None:
        """Drop the cached token and IPN registration."""
        self._token_cache = None
        self._notification_id = None

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, str]] = None,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{urlencode(query)}"
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        body = json.dumps(payload, default=str).encode("utf-8") if payload is not None else None

        try:
            status_code, text = self._transport(method, url, headers, body, self.timeout)
        except GatewayError:
            raise
        except Exception as exc:
            raise GatewayError(f"Payment gateway request to {path} failed: {exc}") from exc

        if not 200 <= status_code < 300:
            raise GatewayError(
                f"Payment gateway returned HTTP {status_code} for {path}",
                details={"gateway_status": status_code},
            )
        try:
            data = json.loads(text or "{}")
        except ValueError as exc:
            raise GatewayError(f"Payment gateway returned invalid JSON for {path}") from exc
        if not isinstance(data, dict):
            raise GatewayError(f"Payment gateway returned an unexpected body for {path}")

        # Successful replies still carry an "error" object whose fields are all null.
        error = data.get("error")
        if isinstance(error, dict):
            if error.get("message") or error.get("code"):
                raise GatewayError(
                    f"Payment gateway error: {error.get('message') or error.get('code')}",
                    details={"gateway_error_code": error.get("code")},
                )
        elif error:
            raise GatewayError(f"Payment gateway error: {error}")
        return data

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def get_auth_token(self) -> str:
        """Cached bearer token; refreshed once it is within 60 seconds of expiry."""
        now = self._clock()
        cached = self._token_cache
        if cached is not None and now < cached[1] - TOKEN_SAFETY_MARGIN:
            return cached[0]

        if not self.consumer_key or not self.consumer_secret:
            raise GatewayError("Payment gateway credentials are not configured.")

        data = self._request(
            "POST",
            "/api/Auth/RequestToken",
            payload={
                "consumer_key": self.consumer_key,
                "consumer_secret": self.consumer_secret,
            },
        )
        token = data.get("token")
        if not token:
            raise GatewayError("Payment gateway did not return an auth token.")
        expires_at = parse_gateway_datetime(data.get("expiryDate")) or now + TOKEN_FALLBACK_LIFETIME
        self._token_cache = (token, expires_at)
        logger.info("Payment gateway token refreshed", extra={"token_expires_at": expires_at.isoformat()})
        return token

    def register_callback(self) -> str:
        """Register the IPN URL once per process and return its notification id."""
        if self._notification_id:
            return self._notification_id
        data = self._request(
            "POST",
            "/api/URLSetup/RegisterIPN",
            payload={"url": self.ipn_url, "ipn_notification_type": "GET"},
            token=self.get_auth_token(),
        )
        ipn_id = data.get("ipn_id")
        if not ipn_id:
            raise GatewayError("Payment gateway did not return an IPN id.")
        self._notification_id = ipn_id
        logger.info("Payment gateway IPN registered", extra={"ipn_url": self.ipn_url})
        return ipn_id

    def submit_order(self, order: OrderRequest) -> SubmittedOrder:
        notification_id = self.register_callback()
        contact = order.contact
        data = self._request(
            "POST",
            "/api/Transactions/SubmitOrderRequest",
            payload={
                "id": order.order_id,
                "currency": order.currency,
                "amount": float(order.amount),
                "description": order.description[:100],
                "callback_url": order.callback_url or self.callback_url,
                "notification_id": notification_id,
                "billing_address": {
                    "email_address": contact.email,
                    "phone_number": contact.phone,
                    "first_name": contact.first_name,
                    "last_name": contact.last_name,
                    "country_code": contact.country_code,
                },
            },
            token=self.get_auth_token(),
        )
        tracking_id = data.get("order_tracking_id")
        redirect_url = data.get("redirect_url")
        if not tracking_id or not redirect_url:
            raise GatewayError("Payment gateway did not accept the order.")
        return SubmittedOrder(
            tracking_id=tracking_id,
            redirect_url=redirect_url,
            merchant_reference=data.get("merchant_reference"),
        )

    def get_transaction_status(self, tracking_id: str) -> TransactionStatus:
        data = self._request(
            "GET",
            "/api/Transactions/GetTransactionStatus",
            query={"orderTrackingId": tracking_id},
            token=self.get_auth_token(),
        )
        try:
            status_code = int(data.get("status_code"))
        except (TypeError, ValueError):
            status_code = STATUS_INVALID
        try:
            amount = Decimal(str(data["amount"])) if data.get("amount") is not None else None
        except ArithmeticError:
            amount = None
        return TransactionStatus(
            status_code=status_code,
            description=data.get("payment_status_description"),
            payment_method=data.get("payment_method") or None,
            merchant_reference=data.get("merchant_reference"),
            amount=amount,
            currency=data.get("currency"),
            message=data.get("message"),
        )


_default_client: Optional[PaymentGatewayClient] = None
_default_client_lock = threading.Lock()


def get_gateway_client() -> PaymentGatewayClient:
    """Process-wide client; also used as a FastAPI dependency."""
    global _default_client
    with _default_client_lock:
        if _default_client is None:
            _default_client = PaymentGatewayClient()
        return _default_client
