"""Unit tests for starting Paystack payments: checkouts, order payments, wallet funding."""

import pytest
from libs.common.errors import GatewayUnavailable, NotFound, ValidationError
from services.payments_service.models import (
    CheckoutStatus,
    PendingCheckout,
    ReconcileStatus,
)
from services.payments_service.paystack_client import PaystackError
from services.payments_service.services.checkout import (
    initialize_checkout_payment,
    initialize_order_payment,
)
from services.payments_service.services.reconciliation import reconcile
from services.store_service.models import Order, OrderStatus, PaymentStatus
from services.store_service.services.order_settlement import create_order
from services.wallet_service.models import (
    TransactionDirection,
    TransactionStatus,
    WalletTransaction,
)
from services.wallet_service.services.funding import initiate_wallet_funding
from sqlalchemy import func, select
from tests.factories import (
    FakeGateway,
    MemberFactory,
    OrderFactory,
    ProductFactory,
    order_payload,
    persist,
)


async def _member_and_product(db, **member_overrides):
    member = MemberFactory.create(**member_overrides)
    product = ProductFactory.create(price=2500.0)
    await persist(db, member, product)
    return member, product


# ---------------------------------------------------------------------------
# initialize_checkout_payment
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_parks_repriced_cart(db_session):
    member, product = await _member_and_product(db_session)
    fake = FakeGateway()

    init = await initialize_checkout_payment(
        db_session,
        user_id=member.id,
        email=member.email,
        payload=order_payload(product, quantity=2),
        gateway=fake,
    )

    assert init.amount == 5500.0
    assert init.authorization_url.endswith(init.reference)
    assert init.order_id is None

    call = fake.initialize_calls[0]
    assert call["amount_kobo"] == 550000
    assert call["email"] == member.email
    assert call["metadata"]["type"] == "checkout"
    assert f"reference={init.reference}" in call["callback_url"]

    checkout = await db_session.get(PendingCheckout, init.reference)
    assert checkout.status == CheckoutStatus.PENDING
    assert checkout.amount == 5500.0
    assert checkout.payload["subtotal"] == 5000.0
    assert checkout.payload["items"][0]["unit_price"] == 2500.0
    # No order exists until the gateway confirms
    assert await db_session.scalar(select(func.count()).select_from(Order)) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_gateway_failure_removes_pending_checkout(db_session):
    member, product = await _member_and_product(db_session)
    fake = FakeGateway()
    fake.fail_initialize = True

    with pytest.raises(GatewayUnavailable):
        await initialize_checkout_payment(
            db_session,
            user_id=member.id,
            email=member.email,
            payload=order_payload(product),
            gateway=fake,
        )

    count = await db_session.scalar(select(func.count()).select_from(PendingCheckout))
    assert count == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_refuses_wallet_covered_cart(db_session):
    member, product = await _member_and_product(db_session, wallet_balance=5000.0)
    fake = FakeGateway()

    with pytest.raises(ValidationError):
        await initialize_checkout_payment(
            db_session,
            user_id=member.id,
            email=member.email,
            payload=order_payload(product, use_wallet=True, wallet_deduction=3000.0),
            gateway=fake,
        )

    assert fake.initialize_calls == []


# ---------------------------------------------------------------------------
# initialize_order_payment
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_payment_attaches_reference(db_session):
    member, product = await _member_and_product(db_session)
    order_id = await create_order(db_session, member.id, order_payload(product))
    fake = FakeGateway()

    init = await initialize_order_payment(
        db_session,
        user_id=member.id,
        email=member.email,
        order_id=order_id,
        gateway=fake,
    )

    assert init.order_id == order_id
    assert init.amount == 3000.0
    assert fake.initialize_calls[0]["metadata"] == {
        "type": "order",
        "order_id": str(order_id),
    }
    transaction_id = await db_session.scalar(
        select(Order.transaction_id).where(Order.id == order_id)
    )
    assert transaction_id == init.reference


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_payment_rejects_other_users_order(db_session):
    member, product = await _member_and_product(db_session)
    stranger = MemberFactory.create()
    await persist(db_session, stranger)
    order_id = await create_order(db_session, member.id, order_payload(product))

    with pytest.raises(NotFound):
        await initialize_order_payment(
            db_session,
            user_id=stranger.id,
            email=stranger.email,
            order_id=order_id,
            gateway=FakeGateway(),
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_payment_rejects_paid_order(db_session):
    member, product = await _member_and_product(db_session, wallet_balance=5000.0)
    order_id = await create_order(
        db_session,
        member.id,
        order_payload(product, use_wallet=True, wallet_deduction=3000.0),
    )

    with pytest.raises(ValidationError):
        await initialize_order_payment(
            db_session,
            user_id=member.id,
            email=member.email,
            order_id=order_id,
            gateway=FakeGateway(),
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_payment_gateway_failure_detaches_reference(db_session):
    member, product = await _member_and_product(db_session)
    order_id = await create_order(db_session, member.id, order_payload(product))
    fake = FakeGateway()
    fake.fail_initialize = True

    with pytest.raises(GatewayUnavailable):
        await initialize_order_payment(
            db_session,
            user_id=member.id,
            email=member.email,
            order_id=order_id,
            gateway=fake,
        )

    transaction_id = await db_session.scalar(
        select(Order.transaction_id).where(Order.id == order_id)
    )
    assert transaction_id is None


async def _order_carrying_reference(db, reference):
    member = MemberFactory.create()
    await persist(db, member)
    order = OrderFactory.create(
        member.id,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        transaction_id=reference,
    )
    await persist(db, order)
    return member, order.id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_payment_settles_reference_already_paid(db_session):
    member, order_id = await _order_carrying_reference(db_session, "txn_R1")
    fake = FakeGateway()
    fake.statuses["txn_R1"] = ("success", 300000)

    with pytest.raises(ValidationError, match="already been paid"):
        await initialize_order_payment(
            db_session,
            user_id=member.id,
            email=member.email,
            order_id=order_id,
            gateway=fake,
        )

    assert fake.initialize_calls == []
    row = (
        await db_session.execute(
            select(Order.transaction_id, Order.payment_status, Order.status).where(
                Order.id == order_id
            )
        )
    ).one()
    assert row.transaction_id == "txn_R1"
    assert row.payment_status == PaymentStatus.COMPLETED
    assert row.status == OrderStatus.CONFIRMED

    result = await reconcile(db_session, "txn_R1", gateway=fake)
    assert result.status == ReconcileStatus.COMPLETED
    assert result.order_id == order_id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_payment_refuses_while_reference_in_flight(db_session):
    member, order_id = await _order_carrying_reference(db_session, "txn_R2")
    fake = FakeGateway()
    fake.statuses["txn_R2"] = ("ongoing", 300000)

    with pytest.raises(ValidationError, match="still processing"):
        await initialize_order_payment(
            db_session,
            user_id=member.id,
            email=member.email,
            order_id=order_id,
            gateway=fake,
        )

    assert fake.initialize_calls == []
    transaction_id = await db_session.scalar(
        select(Order.transaction_id).where(Order.id == order_id)
    )
    assert transaction_id == "txn_R2"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_payment_replaces_abandoned_reference(db_session):
    member, order_id = await _order_carrying_reference(db_session, "txn_R3")
    fake = FakeGateway()
    fake.statuses["txn_R3"] = ("abandoned", 0)

    init = await initialize_order_payment(
        db_session,
        user_id=member.id,
        email=member.email,
        order_id=order_id,
        gateway=fake,
    )

    assert init.reference != "txn_R3"
    row = (
        await db_session.execute(
            select(Order.transaction_id, Order.payment_status).where(
                Order.id == order_id
            )
        )
    ).one()
    assert row.transaction_id == init.reference
    assert row.payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_payment_replaces_reference_unknown_to_gateway(db_session):
    member, order_id = await _order_carrying_reference(db_session, "txn_R4")
    fake = FakeGateway()
    fake.error = PaystackError("Transaction reference not found", status_code=400)

    init = await initialize_order_payment(
        db_session,
        user_id=member.id,
        email=member.email,
        order_id=order_id,
        gateway=fake,
    )

    transaction_id = await db_session.scalar(
        select(Order.transaction_id).where(Order.id == order_id)
    )
    assert transaction_id == init.reference


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_payment_keeps_reference_when_gateway_unreachable(db_session):
    member, order_id = await _order_carrying_reference(db_session, "txn_R5")
    fake = FakeGateway()
    fake.error = GatewayUnavailable("Payment gateway timed out")

    with pytest.raises(GatewayUnavailable):
        await initialize_order_payment(
            db_session,
            user_id=member.id,
            email=member.email,
            order_id=order_id,
            gateway=fake,
        )

    assert fake.initialize_calls == []
    transaction_id = await db_session.scalar(
        select(Order.transaction_id).where(Order.id == order_id)
    )
    assert transaction_id == "txn_R5"


# ---------------------------------------------------------------------------
# initiate_wallet_funding
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_funding_creates_pending_credit(db_session):
    member = MemberFactory.create()
    await persist(db_session, member)
    fake = FakeGateway()

    init = await initiate_wallet_funding(
        db_session, user_id=member.id, email=member.email, amount=2000, gateway=fake
    )

    assert init.amount == 2000.0
    call = fake.initialize_calls[0]
    assert call["amount_kobo"] == 200000
    assert call["metadata"]["type"] == "wallet_funding"
    assert "/wallet?reference=" in call["callback_url"]

    txn = (
        await db_session.execute(
            select(WalletTransaction).where(
                WalletTransaction.reference == init.reference
            )
        )
    ).scalar_one()
    assert txn.status == TransactionStatus.PENDING
    assert txn.type == TransactionDirection.CREDIT
    assert txn.method == "paystack"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_funding_below_minimum_is_rejected(db_session):
    member = MemberFactory.create()
    await persist(db_session, member)
    fake = FakeGateway()

    with pytest.raises(ValidationError) as exc_info:
        await initiate_wallet_funding(
            db_session, user_id=member.id, email=member.email, amount=99.99, gateway=fake
        )

    assert "₦100" in exc_info.value.message
    assert fake.initialize_calls == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_funding_gateway_failure_marks_row_failed(db_session):
    member = MemberFactory.create()
    await persist(db_session, member)
    fake = FakeGateway()
    fake.fail_initialize = True

    with pytest.raises(GatewayUnavailable):
        await initiate_wallet_funding(
            db_session, user_id=member.id, email=member.email, amount=500, gateway=fake
        )

    reference = fake.initialize_calls[0]["reference"]
    status = await db_session.scalar(
        select(WalletTransaction.status).where(
            WalletTransaction.reference == reference
        )
    )
    assert status == TransactionStatus.FAILED
