"""Wallet funding through Paystack.

Initiation only creates a PENDING ledger row and opens a Paystack session.
The balance moves when ``reconcile`` confirms the payment.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.config import get_settings
from libs.common.currency import format_naira, naira_to_kobo, round_currency
from libs.common.errors import GatewayUnavailable, ValidationError
from libs.common.logging import get_logger
from services.payments_service.paystack_client import (
    PaystackError,
    generate_reference,
    get_paystack_client,
)
from services.payments_service.services.checkout import CheckoutGateway
from services.wallet_service.models import (
    TransactionDirection,
    TransactionMethod,
    TransactionStatus,
    WalletTransaction,
)
from services.wallet_service.services.wallet_ops import transition_transaction
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class FundingInitialization:
    reference: str
    authorization_url: str
    access_code: str
    amount: float


async def initiate_wallet_funding(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    email: str,
    amount: float,
    gateway: Optional[CheckoutGateway] = None,
) -> FundingInitialization:
    """Create a PENDING CREDIT row and initialize Paystack for it.

    The row is marked FAILED when Paystack cannot be initialized.
    """
    settings = get_settings()
    amount = round_currency(amount or 0)
    if amount < settings.MIN_WALLET_FUNDING_AMOUNT:
        raise ValidationError(
            f"Minimum funding amount is {format_naira(settings.MIN_WALLET_FUNDING_AMOUNT)}"
        )

    reference = generate_reference()
    db.add(
        WalletTransaction(
            user_id=user_id,
            reference=reference,
            type=TransactionDirection.CREDIT,
            amount=amount,
            method=TransactionMethod.PAYSTACK.value,
            description=f"Wallet funding of {format_naira(amount)}",
            status=TransactionStatus.PENDING,
        )
    )
    await db.commit()

    gateway = gateway or get_paystack_client()
    try:
        init = await gateway.initialize_transaction(
            amount_kobo=naira_to_kobo(amount),
            email=email,
            reference=reference,
            callback_url=f"{settings.APP_BASE_URL}/wallet?reference={reference}",
            metadata={"type": "wallet_funding", "user_id": str(user_id)},
        )
    except (GatewayUnavailable, PaystackError) as exc:
        logger.error("Paystack initialize failed for funding %s: %s", reference, exc)
        await transition_transaction(db, reference, TransactionStatus.FAILED)
        await db.commit()
        raise GatewayUnavailable("Could not start the payment. Please try again.")

    logger.info("Wallet funding %s initialized for %s (₦%.2f)", reference, user_id, amount)
    return FundingInitialization(
        reference=reference,
        authorization_url=init.authorization_url,
        access_code=init.access_code,
        amount=amount,
    )
