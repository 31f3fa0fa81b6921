"""
Order and payment email senders.

Thin wrappers that shape template data; all of them are best-effort.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional

from libs.common.config import get_settings
from libs.common.emails.client import get_email_client


@dataclass
class OrderEmailData:
    order_id: str
    customer_name: str
    customer_email: str
    items: list[dict] = field(default_factory=list)  # name, quantity, price, unit
    total: float = 0.0
    delivery_address: str = ""
    delivery_date: str = ""
    delivery_time: str = ""
    slot_at_capacity: bool = False


async def send_order_confirmation_email(data: OrderEmailData) -> bool:
    """Customer-facing order confirmation."""
    return await get_email_client().send_template(
        template_type="order_confirmation",
        to_email=data.customer_email,
        template_data=asdict(data),
    )


async def send_admin_order_notification(data: OrderEmailData) -> bool:
    """New-order alert for the operations inbox."""
    return await get_email_client().send_template(
        template_type="admin_order_notification",
        to_email=get_settings().ADMIN_EMAIL,
        template_data=asdict(data),
    )


async def send_admin_payment_notification(
    *,
    order_id: str,
    customer_name: str,
    customer_email: Optional[str],
    amount: float,
    transaction_id: str,
    payment_method: str = "Paystack",
) -> bool:
    return await get_email_client().send_template(
        template_type="admin_payment_notification",
        to_email=get_settings().ADMIN_EMAIL,
        template_data={
            "order_id": order_id,
            "customer_name": customer_name,
            "customer_email": customer_email or "No email provided",
            "amount": amount,
            "payment_method": payment_method,
            "transaction_id": transaction_id,
        },
    )


async def send_admin_wallet_deposit_notification(
    *,
    user_name: str,
    user_email: Optional[str],
    amount: float,
    transaction_id: str,
) -> bool:
    return await get_email_client().send_template(
        template_type="admin_wallet_deposit",
        to_email=get_settings().ADMIN_EMAIL,
        template_data={
            "user_name": user_name,
            "user_email": user_email or "No email provided",
            "amount": amount,
            "transaction_id": transaction_id,
        },
    )
