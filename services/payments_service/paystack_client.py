"""
Paystack API client for checkout transactions.

Provides async methods for:
- Initializing a transaction (hosted checkout)
- Verifying a transaction by reference
- Verifying webhook signatures

Amounts crossing this boundary are in kobo. Transport failures and timeouts
are raised as ``GatewayUnavailable`` so callers treat them as inconclusive.
"""

import hashlib
import hmac
import random
import string
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.errors import GatewayUnavailable
from libs.common.logging import get_logger
from services.payments_service.models.enums import GatewayOutcome

logger = get_logger(__name__)

settings = get_settings()

SUCCESS_STATUSES = frozenset({"success"})
FAILED_STATUSES = frozenset({"failed", "abandoned", "reversed"})


def generate_reference() -> str:
    """Opaque, unique-per-attempt reference: ``txn_{epoch_ms}_{9 random chars}``."""
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(random.choices(alphabet, k=9))
    return f"txn_{int(time.time() * 1000)}_{suffix}"


def normalize_gateway_status(raw_status: Optional[str]) -> GatewayOutcome:
    """Bucket a Paystack transaction status.

    Anything not explicitly success or failure (``ongoing``, ``pending``,
    ``processing``, ``queued``, unknown values) is still pending and must
    never be treated as a failure.
    """
    status = (raw_status or "").strip().lower()
    if status in SUCCESS_STATUSES:
        return GatewayOutcome.SUCCESS
    if status in FAILED_STATUSES:
        return GatewayOutcome.FAILED
    return GatewayOutcome.PENDING


@dataclass
class InitializedTransaction:
    """Result of initializing a hosted checkout."""

    reference: str
    authorization_url: str
    access_code: str


@dataclass
class GatewayVerification:
    """Ground truth for one reference, as reported by Paystack."""

    reference: str
    status: str
    amount_kobo: int
    paid_at: Optional[str] = None
    gateway_response: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def outcome(self) -> GatewayOutcome:
        return normalize_gateway_status(self.status)


class PaystackError(Exception):
    """Paystack answered, but rejected the request."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


class PaystackClient:
    """Async client for the Paystack Transaction API."""

    def __init__(
        self,
        secret_key: str = None,
        base_url: str = None,
        timeout: float = None,
    ):
        self.secret_key = secret_key or settings.PAYSTACK_SECRET_KEY
        if not self.secret_key:
            raise ValueError("PAYSTACK_SECRET_KEY is required")
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYSTACK_TIMEOUT_SECONDS
        self._headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict = None,
        json_data: dict = None,
    ) -> dict:
        """Make an async request to Paystack API."""
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._headers,
                    params=params,
                    json=json_data,
                )
        except httpx.TimeoutException as exc:
            logger.warning("Paystack %s %s timed out: %s", method, endpoint, exc)
            raise GatewayUnavailable("Payment gateway timed out") from exc
        except httpx.TransportError as exc:
            logger.warning("Paystack %s %s unreachable: %s", method, endpoint, exc)
            raise GatewayUnavailable("Payment gateway unreachable") from exc

        if response.status_code >= 500:
            logger.error(
                "Paystack API error: %s - %s", response.status_code, response.text
            )
            raise GatewayUnavailable(
                f"Payment gateway returned {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayUnavailable("Payment gateway returned invalid JSON") from exc

        if not response.is_success:
            logger.error("Paystack API error: %s - %s", response.status_code, data)
            raise PaystackError(
                message=data.get("message", "Unknown Paystack error"),
                status_code=response.status_code,
                response_data=data,
            )

        if not data.get("status"):
            raise PaystackError(
                message=data.get("message", "Paystack request failed"),
                response_data=data,
            )

        return data

    # =========================================================================
    # Transaction Methods
    # =========================================================================

    async def initialize_transaction(
        self,
        *,
        amount_kobo: int,
        email: str,
        reference: str,
        callback_url: str,
        metadata: Optional[dict] = None,
    ) -> InitializedTransaction:
        """
        Start a hosted checkout.

        Args:
            amount_kobo: Amount in kobo
            email: Payer email
            reference: Our reference, reused as the idempotency key
            callback_url: Where Paystack redirects after payment
            metadata: Free-form data echoed back on verify and webhooks

        Returns:
            InitializedTransaction with the authorization URL
        """
        data = await self._request(
            "POST",
            "/transaction/initialize",
            json_data={
                "amount": amount_kobo,
                "email": email,
                "reference": reference,
                "callback_url": callback_url,
                "metadata": metadata or {},
            },
        )
        txn = data.get("data", {})
        return InitializedTransaction(
            reference=txn.get("reference", reference),
            authorization_url=txn.get("authorization_url", ""),
            access_code=txn.get("access_code", ""),
        )

    async def verify_transaction(self, reference: str) -> GatewayVerification:
        """
        Fetch the gateway's view of a transaction.

        Raises:
            GatewayUnavailable: timeout, transport error or 5xx
            PaystackError: Paystack rejected the lookup (e.g. unknown reference)
        """
        data = await self._request("GET", f"/transaction/verify/{reference}")
        txn = data.get("data", {}) or {}
        metadata = txn.get("metadata")
        return GatewayVerification(
            reference=txn.get("reference", reference),
            status=txn.get("status", ""),
            amount_kobo=int(txn.get("amount") or 0),
            paid_at=txn.get("paid_at") or txn.get("paidAt"),
            gateway_response=txn.get("gateway_response"),
            metadata=metadata if isinstance(metadata, dict) else {},
        )


def verify_webhook_signature(
    payload: bytes, signature: Optional[str], secret_key: str = None
) -> bool:
    """Check Paystack's ``x-paystack-signature`` (HMAC-SHA512 of the raw body)."""
    if not signature:
        return False
    secret = secret_key or settings.PAYSTACK_SECRET_KEY
    if not secret:
        return False
    expected = hmac.new(secret.encode(), payload, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


_paystack_client: Optional[PaystackClient] = None


def get_paystack_client() -> PaystackClient:
    """Get or create the shared PaystackClient instance."""
    global _paystack_client
    if _paystack_client is None:
        _paystack_client = PaystackClient()
    return _paystack_client
