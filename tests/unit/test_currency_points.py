"""Unit tests for money rounding, kobo conversion and the points calculator."""

import pytest
from libs.common.currency import (
    amounts_match,
    format_naira,
    kobo_to_naira,
    naira_to_kobo,
    round_currency,
)
from services.payments_service.models import GatewayOutcome
from services.payments_service.paystack_client import (
    generate_reference,
    normalize_gateway_status,
)
from services.store_service.services.points import points_from_amount
from services.store_service.services.settings_loader import PointsConfig

# ---------------------------------------------------------------------------
# round_currency
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize(
    "value, expected",
    [
        (1.005, 1.01),
        (0.1 + 0.2, 0.3),
        (1500, 1500.0),
        (1234.5649, 1234.56),
        (0, 0.0),
    ],
)
def test_round_currency_half_up(value, expected):
    assert round_currency(value) == expected


@pytest.mark.unit
@pytest.mark.parametrize("value", [0.005, 1.005, 19.999, 3333.335, 0.1 + 0.7, 99999.994])
def test_round_currency_is_idempotent(value):
    once = round_currency(value)
    assert round_currency(once) == once


@pytest.mark.unit
def test_repeated_line_totals_do_not_drift():
    """Summing rounded line totals matches rounding the sum."""
    lines = [round_currency(333.33 * 3) for _ in range(30)]
    assert round_currency(sum(lines)) == round_currency(999.99 * 30)


@pytest.mark.unit
def test_amounts_match_uses_rounded_values():
    assert amounts_match(10.004, 10.0)
    assert not amounts_match(10.01, 10.0)
    assert amounts_match(10.5, 10.0, tolerance=1.0)


# ---------------------------------------------------------------------------
# kobo conversion
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_naira_kobo_conversion():
    assert naira_to_kobo(3000) == 300000
    assert naira_to_kobo(1.005) == 101
    assert kobo_to_naira(550050) == 5500.5
    assert kobo_to_naira(naira_to_kobo(1234.56)) == 1234.56


@pytest.mark.unit
def test_format_naira():
    assert format_naira(5500) == "₦5,500"
    assert format_naira(1234.5) == "₦1,234.50"


# ---------------------------------------------------------------------------
# points_from_amount
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_points_zero_without_settings():
    assert points_from_amount(100000, None) == 0


@pytest.mark.unit
def test_points_zero_when_inactive():
    assert points_from_amount(100000, PointsConfig(is_active=False)) == 0


@pytest.mark.unit
@pytest.mark.parametrize("amount", [0, -500, None])
def test_points_zero_for_non_positive_amount(amount):
    assert points_from_amount(amount, PointsConfig()) == 0


@pytest.mark.unit
def test_points_floor_per_threshold():
    config = PointsConfig(amount_threshold=50000, points_per_threshold=10)
    assert points_from_amount(100000, config) == 20
    assert points_from_amount(149999.99, config) == 20
    assert points_from_amount(49999, config) == 0


@pytest.mark.unit
def test_points_fall_back_for_invalid_settings():
    """Non-positive threshold / rate fall back to 50,000 and 1."""
    config = PointsConfig(amount_threshold=0, points_per_threshold=-3)
    assert points_from_amount(120000, config) == 2


# ---------------------------------------------------------------------------
# Gateway status + references
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize(
    "raw, outcome",
    [
        ("success", GatewayOutcome.SUCCESS),
        ("SUCCESS", GatewayOutcome.SUCCESS),
        ("failed", GatewayOutcome.FAILED),
        ("abandoned", GatewayOutcome.FAILED),
        ("reversed", GatewayOutcome.FAILED),
        ("ongoing", GatewayOutcome.PENDING),
        ("pending", GatewayOutcome.PENDING),
        ("processing", GatewayOutcome.PENDING),
        ("queued", GatewayOutcome.PENDING),
        ("something-new", GatewayOutcome.PENDING),
        (None, GatewayOutcome.PENDING),
    ],
)
def test_normalize_gateway_status(raw, outcome):
    assert normalize_gateway_status(raw) == outcome


@pytest.mark.unit
def test_generate_reference_format():
    reference = generate_reference()
    prefix, epoch_ms, suffix = reference.split("_")
    assert prefix == "txn"
    assert epoch_ms.isdigit() and len(epoch_ms) >= 13
    assert len(suffix) == 9
    assert generate_reference() != reference
