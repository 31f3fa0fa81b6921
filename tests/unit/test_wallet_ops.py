"""Unit tests for wallet_ops core business logic.

Tests call wallet_ops functions directly with the db_session fixture.
No HTTP layer involved: pure business logic validation.
"""

import uuid

import pytest
from libs.common.errors import InsufficientFunds, OrphanedReference, ValidationError
from services.members_service.models import Member
from services.wallet_service.models import (
    TransactionDirection,
    TransactionStatus,
    WalletTransaction,
)
from services.wallet_service.services.wallet_ops import (
    audit_wallet_ledger,
    credit_wallet,
    debit_wallet,
    ensure_sufficient_balance,
    get_wallet_balance,
    increment_balance,
    list_transactions,
    transition_transaction,
)
from sqlalchemy import func, select, update
from tests.factories import FundingTransactionFactory, MemberFactory, persist

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _member(db, balance=0.0):
    member = MemberFactory.create(wallet_balance=balance)
    await persist(db, member)
    return member


async def _credit(db, member, amount, reference=None):
    txn = await credit_wallet(
        db,
        user_id=member.id,
        amount=amount,
        reference=reference or f"test-credit-{uuid.uuid4().hex[:8]}",
        method="wallet",
        description="Test credit",
    )
    await db.commit()
    return txn


# ---------------------------------------------------------------------------
# credit_wallet
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credit_wallet_appends_row_and_increments(db_session):
    member = await _member(db_session)

    txn = await _credit(db_session, member, 1500)

    assert txn.type == TransactionDirection.CREDIT
    assert txn.status == TransactionStatus.COMPLETED
    assert txn.amount == 1500.0
    assert await get_wallet_balance(db_session, member.id) == 1500.0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credit_wallet_idempotent_on_reference(db_session):
    member = await _member(db_session)

    first = await _credit(db_session, member, 1000, reference="bonus-abc")
    second = await _credit(db_session, member, 1000, reference="bonus-abc")

    assert first.id == second.id
    assert await get_wallet_balance(db_session, member.id) == 1000.0
    count = await db_session.scalar(
        select(func.count())
        .select_from(WalletTransaction)
        .where(WalletTransaction.reference == "bonus-abc")
    )
    assert count == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credit_wallet_rejects_non_positive_amount(db_session):
    member = await _member(db_session)

    with pytest.raises(ValidationError):
        await _credit(db_session, member, 0)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credit_rounds_to_kobo(db_session):
    member = await _member(db_session)

    await _credit(db_session, member, 0.1 + 0.2)
    await _credit(db_session, member, 1.005)

    assert await get_wallet_balance(db_session, member.id) == 1.31


@pytest.mark.asyncio
@pytest.mark.unit
async def test_increment_balance_for_missing_member_is_orphaned(db_session):
    with pytest.raises(OrphanedReference):
        await increment_balance(db_session, uuid.uuid4(), 100, reference="ghost")
    await db_session.rollback()


# ---------------------------------------------------------------------------
# debit_wallet
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_debit_wallet_success(db_session):
    member = await _member(db_session, balance=2000)

    txn = await debit_wallet(
        db_session,
        user_id=member.id,
        amount=1200,
        reference="order-x-wallet",
        method="wallet",
        description="Order payment",
    )
    await db_session.commit()

    assert txn.type == TransactionDirection.DEBIT
    assert await get_wallet_balance(db_session, member.id) == 800.0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_debit_wallet_insufficient_funds_writes_nothing(db_session):
    member = await _member(db_session, balance=1000)

    with pytest.raises(InsufficientFunds) as exc_info:
        await debit_wallet(
            db_session,
            user_id=member.id,
            amount=1200,
            reference="order-y-wallet",
            method="wallet",
            description="Order payment",
        )
    await db_session.rollback()

    assert exc_info.value.required == 1200.0
    assert exc_info.value.available == 1000.0
    assert await get_wallet_balance(db_session, member.id) == 1000.0
    count = await db_session.scalar(
        select(func.count()).select_from(WalletTransaction)
    )
    assert count == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_debit_wallet_idempotent_on_reference(db_session):
    member = await _member(db_session, balance=2000)
    kwargs = dict(
        user_id=member.id,
        amount=500,
        reference="order-z-wallet",
        method="wallet",
        description="Order payment",
    )

    await debit_wallet(db_session, **kwargs)
    await db_session.commit()
    await debit_wallet(db_session, **kwargs)
    await db_session.commit()

    assert await get_wallet_balance(db_session, member.id) == 1500.0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_ensure_sufficient_balance(db_session):
    member = await _member(db_session, balance=300)

    assert await ensure_sufficient_balance(db_session, member.id, 300) == 300.0
    with pytest.raises(InsufficientFunds):
        await ensure_sufficient_balance(db_session, member.id, 300.01)


# ---------------------------------------------------------------------------
# transition_transaction
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_transition_claims_pending_row_once(db_session):
    member = await _member(db_session)
    txn = FundingTransactionFactory.create(member.id)
    await persist(db_session, txn)

    assert await transition_transaction(
        db_session, txn.reference, TransactionStatus.COMPLETED
    )
    assert not await transition_transaction(
        db_session, txn.reference, TransactionStatus.FAILED
    )
    await db_session.commit()

    status = await db_session.scalar(
        select(WalletTransaction.status).where(
            WalletTransaction.reference == txn.reference
        )
    )
    assert status == TransactionStatus.COMPLETED


# ---------------------------------------------------------------------------
# list_transactions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_transactions_paginates(db_session):
    member = await _member(db_session)
    other = await _member(db_session)
    for _ in range(3):
        await _credit(db_session, member, 100)
    await _credit(db_session, other, 100)

    page, total = await list_transactions(db_session, member.id, limit=2)

    assert total == 3
    assert len(page) == 2
    assert all(txn.user_id == member.id for txn in page)


# ---------------------------------------------------------------------------
# audit_wallet_ledger
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_audit_reports_no_drift_for_consistent_ledger(db_session):
    member = await _member(db_session)
    await _credit(db_session, member, 2000)
    await debit_wallet(
        db_session,
        user_id=member.id,
        amount=750,
        reference="order-audit-wallet",
        method="wallet",
        description="Order payment",
    )
    await db_session.commit()

    assert await audit_wallet_ledger(db_session, user_id=member.id) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_audit_detects_balance_without_ledger_row(db_session):
    """A balance change that bypassed the ledger shows up as drift."""
    member = await _member(db_session)
    await _credit(db_session, member, 1000)
    await db_session.execute(
        update(Member)
        .where(Member.id == member.id)
        .values(wallet_balance=Member.wallet_balance + 250)
    )
    await db_session.commit()

    drifted = await audit_wallet_ledger(db_session)

    assert len(drifted) == 1
    assert drifted[0].user_id == member.id
    assert drifted[0].stored_balance == 1250.0
    assert drifted[0].ledger_balance == 1000.0
    assert drifted[0].drift == 250.0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_audit_ignores_pending_and_failed_rows(db_session):
    member = await _member(db_session)
    pending = FundingTransactionFactory.create(member.id)
    failed = FundingTransactionFactory.create(
        member.id, status=TransactionStatus.FAILED
    )
    await persist(db_session, pending, failed)

    assert await audit_wallet_ledger(db_session, user_id=member.id) == []
