"""Integration tests for payments_service: initialize, verify, webhook, admin."""

import hashlib
import hmac
import json
import uuid

import pytest
from services.payments_service.models import PendingCheckout
from services.store_service.models import Order, OrderStatus, PaymentStatus
from services.wallet_service.services.wallet_ops import get_wallet_balance
from sqlalchemy import func, select
from tests.conftest import make_admin_user, make_member_user, override_auth
from tests.factories import (
    FundingTransactionFactory,
    MemberFactory,
    OrderFactory,
    ProductFactory,
    order_payload,
    persist,
)

WEBHOOK_SECRET = b"sk_test_webhook_secret"


def _signed(event: dict) -> tuple[bytes, dict]:
    raw = json.dumps(event).encode()
    signature = hmac.new(WEBHOOK_SECRET, raw, hashlib.sha512).hexdigest()
    return raw, {
        "x-paystack-signature": signature,
        "content-type": "application/json",
    }


async def _member_and_product(db):
    member = MemberFactory.create()
    product = ProductFactory.create(price=2500.0)
    await persist(db, member, product)
    return member, product


async def _pending_order(db, member):
    order = OrderFactory.create(
        member.id,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        transaction_id=None,
    )
    await persist(db, order)
    return order


# ---------------------------------------------------------------------------
# POST /payments/initialize
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_initialize_checkout_parks_cart(
    payments_client, db_session, fake_gateway
):
    """A cart is priced and parked; no order exists until payment succeeds."""
    from services.payments_service.app.main import app

    member, product = await _member_and_product(db_session)
    payload = order_payload(product, quantity=2)
    with override_auth(app, make_member_user(member.id, member.email)):
        response = await payments_client.post(
            "/payments/initialize", json={"order": payload.model_dump(mode="json")}
        )

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["amount"] == 5500.0
    assert data["order_id"] is None
    assert data["authorization_url"].endswith(data["reference"])
    assert fake_gateway.initialize_calls[0]["amount_kobo"] == 550000

    checkout = await db_session.scalar(
        select(PendingCheckout).where(PendingCheckout.reference == data["reference"])
    )
    assert checkout is not None
    assert checkout.user_id == member.id
    order_count = await db_session.scalar(select(func.count()).select_from(Order))
    assert order_count == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_initialize_existing_order(payments_client, db_session, fake_gateway):
    from services.payments_service.app.main import app

    member, _ = await _member_and_product(db_session)
    order = await _pending_order(db_session, member)
    with override_auth(app, make_member_user(member.id, member.email)):
        response = await payments_client.post(
            "/payments/initialize", json={"order_id": str(order.id)}
        )

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["order_id"] == str(order.id)
    assert data["amount"] == 3000.0
    stored = await db_session.scalar(
        select(Order.transaction_id).where(Order.id == order.id)
    )
    assert stored == data["reference"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_initialize_requires_exactly_one_target(
    payments_client, db_session, fake_gateway
):
    from services.payments_service.app.main import app

    member, product = await _member_and_product(db_session)
    both = {
        "order": order_payload(product).model_dump(mode="json"),
        "order_id": str(uuid.uuid4()),
    }
    with override_auth(app, make_member_user(member.id, member.email)):
        neither = await payments_client.post("/payments/initialize", json={})
        too_many = await payments_client.post("/payments/initialize", json=both)

    assert neither.status_code == 422
    assert too_many.status_code == 422
    assert fake_gateway.initialize_calls == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_initialize_gateway_down(payments_client, db_session, fake_gateway):
    from services.payments_service.app.main import app

    member, product = await _member_and_product(db_session)
    fake_gateway.fail_initialize = True
    with override_auth(app, make_member_user(member.id, member.email)):
        response = await payments_client.post(
            "/payments/initialize",
            json={"order": order_payload(product).model_dump(mode="json")},
        )

    assert response.status_code == 502
    assert response.json()["code"] == "gateway_unavailable"
    count = await db_session.scalar(select(func.count()).select_from(PendingCheckout))
    assert count == 0


# ---------------------------------------------------------------------------
# POST /payments/verify
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_settles_checkout(payments_client, db_session, fake_gateway):
    from services.payments_service.app.main import app

    member, product = await _member_and_product(db_session)
    user = make_member_user(member.id, member.email)
    with override_auth(app, user):
        init = await payments_client.post(
            "/payments/initialize",
            json={"order": order_payload(product).model_dump(mode="json")},
        )
        reference = init.json()["reference"]
        fake_gateway.statuses[reference] = ("success", 300000)

        first = await payments_client.post(
            "/payments/verify", json={"reference": reference}
        )
        second = await payments_client.post(
            "/payments/verify", json={"reference": reference}
        )

    assert first.status_code == 200, first.text
    assert first.json()["status"] == "completed"
    assert first.json()["kind"] == "checkout"
    assert first.json()["already_settled"] is False

    assert second.status_code == 200
    assert second.json()["status"] == "completed"
    assert second.json()["already_settled"] is True
    assert fake_gateway.verify_calls == [reference]

    order = await db_session.scalar(
        select(Order).where(Order.transaction_id == reference)
    )
    assert order.status == OrderStatus.CONFIRMED
    assert order.payment_status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_rejects_other_members_reference(
    payments_client, db_session, fake_gateway
):
    from services.payments_service.app.main import app

    member, _ = await _member_and_product(db_session)
    txn = FundingTransactionFactory.create(member.id)
    await persist(db_session, txn)

    with override_auth(app, make_member_user(uuid.uuid4(), "other@test.com")):
        response = await payments_client.post(
            "/payments/verify", json={"reference": txn.reference}
        )

    assert response.status_code == 404
    assert response.json()["code"] == "reference_not_found"
    assert fake_gateway.verify_calls == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_pending_while_gateway_processing(
    payments_client, db_session, fake_gateway
):
    from services.payments_service.app.main import app

    member, _ = await _member_and_product(db_session)
    txn = FundingTransactionFactory.create(member.id)
    await persist(db_session, txn)
    fake_gateway.statuses[txn.reference] = ("ongoing", 0)

    with override_auth(app, make_member_user(member.id, member.email)):
        response = await payments_client.post(
            "/payments/verify", json={"reference": txn.reference}
        )

    assert response.status_code == 200
    assert response.json()["status"] == "pending"
    assert await get_wallet_balance(db_session, member.id) == 0.0


# ---------------------------------------------------------------------------
# POST /payments/webhooks/paystack
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_charge_success_credits_funding(
    payments_client, db_session, fake_gateway
):
    member, _ = await _member_and_product(db_session)
    txn = FundingTransactionFactory.create(member.id)
    await persist(db_session, txn)
    fake_gateway.statuses[txn.reference] = ("success", 200000)

    raw, headers = _signed(
        {"event": "charge.success", "data": {"reference": txn.reference}}
    )
    response = await payments_client.post(
        "/payments/webhooks/paystack", content=raw, headers=headers
    )

    assert response.status_code == 200, response.text
    assert response.json() == {"received": True, "status": "completed"}
    assert await get_wallet_balance(db_session, member.id) == 2000.0

    # Paystack retries the same event: no second credit
    retry = await payments_client.post(
        "/payments/webhooks/paystack", content=raw, headers=headers
    )
    assert retry.json() == {"received": True, "status": "completed"}
    assert await get_wallet_balance(db_session, member.id) == 2000.0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_outcome_comes_from_gateway(
    payments_client, db_session, fake_gateway
):
    """A forged success event cannot settle an abandoned payment."""
    member, _ = await _member_and_product(db_session)
    txn = FundingTransactionFactory.create(member.id)
    await persist(db_session, txn)
    fake_gateway.statuses[txn.reference] = ("abandoned", 0)

    raw, headers = _signed(
        {"event": "charge.success", "data": {"reference": txn.reference}}
    )
    response = await payments_client.post(
        "/payments/webhooks/paystack", content=raw, headers=headers
    )

    assert response.json() == {"received": True, "status": "failed"}
    assert await get_wallet_balance(db_session, member.id) == 0.0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_invalid_signature(payments_client, fake_gateway):
    raw = json.dumps({"event": "charge.success", "data": {"reference": "x"}}).encode()

    response = await payments_client.post(
        "/payments/webhooks/paystack",
        content=raw,
        headers={"x-paystack-signature": "deadbeef"},
    )
    missing = await payments_client.post("/payments/webhooks/paystack", content=raw)

    assert response.status_code == 401
    assert missing.status_code == 401
    assert fake_gateway.verify_calls == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_ignores_unhandled_events_and_unknown_references(
    payments_client, fake_gateway
):
    raw, headers = _signed(
        {"event": "subscription.create", "data": {"reference": "txn_1_abc"}}
    )
    ignored = await payments_client.post(
        "/payments/webhooks/paystack", content=raw, headers=headers
    )

    raw, headers = _signed(
        {"event": "charge.success", "data": {"reference": "txn_unknown"}}
    )
    unknown = await payments_client.post(
        "/payments/webhooks/paystack", content=raw, headers=headers
    )

    assert ignored.status_code == 200
    assert ignored.json() == {"received": True}
    assert unknown.status_code == 200
    assert unknown.json() == {"received": True}
    assert fake_gateway.verify_calls == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_invalid_json(payments_client):
    raw = b"not json"
    signature = hmac.new(WEBHOOK_SECRET, raw, hashlib.sha512).hexdigest()

    response = await payments_client.post(
        "/payments/webhooks/paystack",
        content=raw,
        headers={"x-paystack-signature": signature},
    )

    assert response.status_code == 400


# ---------------------------------------------------------------------------
# POST /payments/admin/reconcile/{reference}
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_reconcile_requires_admin(payments_client, db_session):
    from services.payments_service.app.main import app

    member, _ = await _member_and_product(db_session)
    with override_auth(app, make_member_user(member.id, member.email)):
        response = await payments_client.post("/payments/admin/reconcile/txn_1_abc")

    assert response.status_code == 403


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_reconcile_flagged_reference(
    payments_client, db_session, fake_gateway
):
    from services.payments_service.app.main import app

    member, _ = await _member_and_product(db_session)
    txn = FundingTransactionFactory.create(member.id, flagged_for_review=True)
    await persist(db_session, txn)
    fake_gateway.statuses[txn.reference] = ("success", 200000)

    with override_auth(app, make_admin_user()):
        skipped = await payments_client.post(
            f"/payments/admin/reconcile/{txn.reference}"
        )
        settled = await payments_client.post(
            f"/payments/admin/reconcile/{txn.reference}",
            params={"include_flagged": "true"},
        )

    assert skipped.status_code == 200
    assert skipped.json()["status"] == "pending"
    assert skipped.json()["message"] == "Under manual review"

    assert settled.status_code == 200, settled.text
    assert settled.json()["status"] == "completed"
    assert await get_wallet_balance(db_session, member.id) == 2000.0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_reconcile_unknown_reference(payments_client, fake_gateway):
    from services.payments_service.app.main import app

    with override_auth(app, make_admin_user()):
        response = await payments_client.post("/payments/admin/reconcile/txn_nope")

    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_health(payments_client):
    response = await payments_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "payments"}
