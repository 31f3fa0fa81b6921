"""Paystack webhook handler."""

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.errors import ReferenceNotFound
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.payments_service.paystack_client import verify_webhook_signature
from services.payments_service.services.reconciliation import reconcile
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])
logger = get_logger(__name__)

RECONCILED_EVENTS = frozenset({"charge.success", "charge.failed", "transaction.failed"})


@router.post("/webhooks/paystack")
async def paystack_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
):
    """
    Paystack webhook endpoint (no auth; verified by x-paystack-signature).

    The event body is only a trigger: the outcome always comes from
    ``reconcile``, which asks Paystack for the transaction itself.
    """
    raw = await request.body()
    signature = request.headers.get("x-paystack-signature")
    if not verify_webhook_signature(raw, signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    try:
        payload = json.loads(raw.decode("utf-8") or "{}")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body"
        )
    event = payload.get("event")
    data = payload.get("data") or {}
    reference = data.get("reference")
    if not reference or event not in RECONCILED_EVENTS:
        logger.debug("Ignoring webhook event %s (reference=%s)", event, reference)
        return {"received": True}

    try:
        result = await reconcile(db, reference, source="webhook")
    except ReferenceNotFound:
        logger.warning(
            "Webhook received for unknown payment reference: %s",
            reference,
            extra={"extra_fields": {"reference": reference, "event": event}},
        )
        return {"received": True}

    logger.info(
        "Webhook %s for %s reconciled as %s",
        event,
        reference,
        result.status.value,
        extra={"extra_fields": {"reference": reference, "event": event}},
    )
    return {"received": True, "status": result.status.value}
