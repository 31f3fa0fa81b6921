"""Internal service-to-service wallet endpoints.

These endpoints are called by other Marketdotcom services via service-role
JWT, not by frontend clients directly.
"""

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import require_service_role
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.store_service.models import ConfigKind
from services.store_service.services.settings_loader import load_active_config
from services.wallet_service.schemas import ReferralResponse, ReferralSignupRequest
from services.wallet_service.services.referrals import record_referral_signup
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/internal", tags=["internal-wallet"])


@router.post(
    "/referrals/signup",
    response_model=ReferralResponse,
    status_code=status.HTTP_201_CREATED,
)
async def referral_signup(
    body: ReferralSignupRequest,
    _service: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
):
    """Record that a newly registered member signed up with a referral code."""
    config = await load_active_config(db, ConfigKind.REFERRAL)
    return await record_referral_signup(
        db,
        referee_id=body.referee_id,
        referral_code=body.referral_code,
        config=config,
    )
