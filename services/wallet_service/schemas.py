"""Pydantic request/response schemas for the Wallet Service."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.wallet_service.models import (
    TransactionDirection,
    TransactionStatus,
)

# ---------------------------------------------------------------------------
# Wallet Schemas
# ---------------------------------------------------------------------------


class WalletSummaryResponse(BaseModel):
    user_id: uuid.UUID
    wallet_balance: float
    points: int


class TransactionResponse(BaseModel):
    id: uuid.UUID
    reference: str
    type: TransactionDirection
    amount: float
    method: str
    description: str
    status: TransactionStatus
    order_id: Optional[uuid.UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    skip: int
    limit: int


# ---------------------------------------------------------------------------
# Funding Schemas
# ---------------------------------------------------------------------------


class FundWalletRequest(BaseModel):
    amount: float = Field(..., gt=0)


class FundWalletResponse(BaseModel):
    reference: str
    authorization_url: str
    access_code: str
    amount: float


class VerifyFundingRequest(BaseModel):
    reference: str = Field(..., min_length=1, max_length=100)


# ---------------------------------------------------------------------------
# Rewards Schemas
# ---------------------------------------------------------------------------


class ConvertPointsRequest(BaseModel):
    points: int = Field(..., gt=0)


class ConvertPointsResponse(BaseModel):
    points_converted: int
    amount_credited: float
    reference: str
    wallet_balance: float
    points_remaining: int


# ---------------------------------------------------------------------------
# Admin / Internal Schemas
# ---------------------------------------------------------------------------


class LedgerDriftResponse(BaseModel):
    user_id: uuid.UUID
    stored_balance: float
    ledger_balance: float
    drift: float


class LedgerAuditResponse(BaseModel):
    drifted: list[LedgerDriftResponse]
    count: int


class ReferralSignupRequest(BaseModel):
    referee_id: uuid.UUID
    referral_code: str = Field(..., min_length=1, max_length=20)


class ReferralResponse(BaseModel):
    id: uuid.UUID
    referrer_id: uuid.UUID
    referred_email: str
    code: str
    is_used: bool
    used_at: Optional[datetime] = None
    first_purchase_bonus_paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
