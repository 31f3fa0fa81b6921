"""Member-facing wallet endpoints."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, status
from libs.auth.dependencies import require_member
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.members_service.models import Member
from services.payments_service.schemas import ReconcileResponse
from services.payments_service.services.reconciliation import reconcile
from services.store_service.models import ConfigKind
from services.store_service.services.settings_loader import load_active_config
from services.wallet_service.schemas import (
    ConvertPointsRequest,
    ConvertPointsResponse,
    FundWalletRequest,
    FundWalletResponse,
    TransactionListResponse,
    TransactionResponse,
    VerifyFundingRequest,
    WalletSummaryResponse,
)
from services.wallet_service.services.funding import initiate_wallet_funding
from services.wallet_service.services.rewards_service import convert_points_to_wallet
from services.wallet_service.services.wallet_ops import list_transactions
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/wallet", tags=["wallet"])


async def _get_member(db: AsyncSession, current_user: AuthUser) -> Member:
    member = await db.get(Member, current_user.member_id)
    if member is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Member not found"
        )
    return member


@router.get("/me", response_model=WalletSummaryResponse)
async def get_my_wallet(
    current_user: AuthUser = Depends(require_member),
    db: AsyncSession = Depends(get_async_db),
):
    """Get the current member's wallet balance and points."""
    member = await _get_member(db, current_user)
    return WalletSummaryResponse(
        user_id=member.id,
        wallet_balance=member.wallet_balance,
        points=member.points,
    )


@router.get("/transactions", response_model=TransactionListResponse)
async def list_my_transactions(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: AuthUser = Depends(require_member),
    db: AsyncSession = Depends(get_async_db),
):
    """List the current member's ledger rows, newest first."""
    rows, total = await list_transactions(
        db, current_user.member_id, limit=limit, offset=skip
    )
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(row) for row in rows],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("/fund", response_model=FundWalletResponse)
async def fund_wallet(
    body: FundWalletRequest,
    current_user: AuthUser = Depends(require_member),
    db: AsyncSession = Depends(get_async_db),
):
    """Start a Paystack payment that credits the wallet once verified."""
    member = await _get_member(db, current_user)
    init = await initiate_wallet_funding(
        db, user_id=member.id, email=member.email, amount=body.amount
    )
    return FundWalletResponse(**asdict(init))


@router.post("/fund/verify", response_model=ReconcileResponse)
async def verify_funding(
    body: VerifyFundingRequest,
    current_user: AuthUser = Depends(require_member),
    db: AsyncSession = Depends(get_async_db),
):
    """Verify a funding payment after the Paystack redirect."""
    result = await reconcile(
        db, body.reference, user_id=current_user.member_id, source="verify"
    )
    return ReconcileResponse(**asdict(result))


@router.post("/rewards/convert", response_model=ConvertPointsResponse)
async def convert_points(
    body: ConvertPointsRequest,
    current_user: AuthUser = Depends(require_member),
    db: AsyncSession = Depends(get_async_db),
):
    """Convert loyalty points into wallet naira."""
    config = await load_active_config(db, ConfigKind.POINTS)
    result = await convert_points_to_wallet(
        db, user_id=current_user.member_id, points=body.points, config=config
    )
    return ConvertPointsResponse(**asdict(result))
