"""Admin wallet endpoints."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.wallet_service.schemas import LedgerAuditResponse, LedgerDriftResponse
from services.wallet_service.services.wallet_ops import audit_wallet_ledger
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/admin/wallet", tags=["admin-wallet"])


@router.get("/audit", response_model=LedgerAuditResponse)
async def audit_ledger(
    user_id: Optional[uuid.UUID] = Query(None),
    tolerance: float = Query(0.01, ge=0),
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Compare stored wallet balances with the completed ledger rows."""
    drifted = await audit_wallet_ledger(db, user_id=user_id, tolerance=tolerance)
    logger.info("Ledger audit by %s: %d drifted wallet(s)", admin.user_id, len(drifted))
    return LedgerAuditResponse(
        drifted=[
            LedgerDriftResponse(
                user_id=entry.user_id,
                stored_balance=entry.stored_balance,
                ledger_balance=entry.ledger_balance,
                drift=entry.drift,
            )
            for entry in drifted
        ],
        count=len(drifted),
    )
