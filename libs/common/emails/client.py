"""
Email client for transactional emails.

Templates are rendered by the email service; this client only forwards the
template type and data. Every send is best-effort: failures are logged and
reported as ``False``, never raised, so an email outage cannot fail an order
or a payment settlement.

Usage:
    from libs.common.emails.client import get_email_client

    email_client = get_email_client()
    await email_client.send_template(
        template_type="order_confirmation",
        to_email="customer@example.com",
        template_data={"order_id": "...", "total": 5500.0},
    )
"""

from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class EmailClient:
    """
    HTTP client for the transactional email service.

    Authenticates with a short-lived service-role JWT, the same way other
    internal calls do.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.base_url = base_url or settings.EMAIL_SERVICE_URL
        self.timeout = timeout or settings.EMAIL_TIMEOUT_SECONDS

    def _get_auth_headers(self) -> dict[str, str]:
        from libs.auth.dependencies import _service_role_jwt

        token = _service_role_jwt("email_client")
        return {"Authorization": f"Bearer {token}"}

    async def send_template(
        self,
        template_type: str,
        to_email: str,
        template_data: dict[str, Any],
    ) -> bool:
        """
        Send a templated email.

        Template types used by this codebase:
        - order_confirmation: customer order placed / paid
        - admin_order_notification: new order for the operations inbox
        - admin_payment_notification: gateway payment confirmed
        - admin_wallet_deposit: customer funded their wallet

        Returns:
            True if the email service accepted the message, False otherwise
        """
        if not to_email:
            logger.warning("Skipping '%s' email: no recipient", template_type)
            return False

        payload = {
            "template_type": template_type,
            "to_email": to_email,
            "template_data": template_data,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/email/template",
                    json=payload,
                    headers=self._get_auth_headers(),
                )
            if response.status_code == 200:
                return bool(response.json().get("success", False))
            logger.error(
                "Template email '%s' returned %d: %s",
                template_type,
                response.status_code,
                response.text,
            )
            return False
        except httpx.RequestError as e:
            logger.error("Email service unreachable for '%s': %s", template_type, e)
            return False
        except Exception as e:
            logger.error("Error sending '%s' email: %s", template_type, e)
            return False


# Singleton instance for convenience
_email_client: Optional[EmailClient] = None


def get_email_client() -> EmailClient:
    """Get or create the singleton EmailClient instance."""
    global _email_client
    if _email_client is None:
        _email_client = EmailClient()
    return _email_client
