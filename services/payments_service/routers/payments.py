"""Customer and operator payment endpoints: initialize, verify, reconcile."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, status
from libs.auth.dependencies import require_admin, require_member
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.members_service.models import Member
from services.payments_service.schemas import (
    InitializePaymentRequest,
    InitializePaymentResponse,
    ReconcileResponse,
    VerifyPaymentRequest,
)
from services.payments_service.services.checkout import (
    initialize_checkout_payment,
    initialize_order_payment,
)
from services.payments_service.services.reconciliation import reconcile
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])
logger = get_logger(__name__)


async def _payer_email(db: AsyncSession, current_user: AuthUser) -> str:
    if current_user.email:
        return current_user.email
    member = await db.get(Member, current_user.member_id)
    if member is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Member not found"
        )
    return member.email


@router.post("/initialize", response_model=InitializePaymentResponse)
async def initialize_payment(
    payload: InitializePaymentRequest,
    current_user: AuthUser = Depends(require_member),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Start a Paystack payment.

    With ``order`` the cart is priced server-side and parked until the payment
    succeeds; with ``order_id`` an existing unpaid order gets a new reference.
    """
    email = await _payer_email(db, current_user)
    if payload.order is not None:
        init = await initialize_checkout_payment(
            db, user_id=current_user.member_id, email=email, payload=payload.order
        )
    else:
        init = await initialize_order_payment(
            db, user_id=current_user.member_id, email=email, order_id=payload.order_id
        )
    return InitializePaymentResponse(**asdict(init))


@router.post("/verify", response_model=ReconcileResponse)
async def verify_payment(
    payload: VerifyPaymentRequest,
    current_user: AuthUser = Depends(require_member),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Called by the client after the Paystack redirect.

    Safe to call repeatedly; settled references return their stored state.
    """
    result = await reconcile(
        db, payload.reference, user_id=current_user.member_id, source="verify"
    )
    return ReconcileResponse(**asdict(result))


@router.post("/admin/reconcile/{reference}", response_model=ReconcileResponse)
async def admin_reconcile(
    reference: str,
    include_flagged: bool = Query(False),
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Operator-triggered reconciliation of a single reference.
    """
    logger.info("Admin %s reconciling %s", current_user.user_id, reference)
    result = await reconcile(
        db, reference, source="admin", include_flagged=include_flagged
    )
    return ReconcileResponse(**asdict(result))
