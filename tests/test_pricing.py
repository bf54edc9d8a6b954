from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from freezegun import freeze_time

from pdv_core.errors import InvalidDiscount
from pdv_core.money import parse_decimal, to_decimal
from pdv_core.schemas.cart import CartLineItem, DiscountSpec, FreightSpec
from pdv_core.schemas.catalog import CompositeComponent, Promotion
from pdv_core.services.pricing import (
    compute_discount,
    compute_totals,
    is_promotion_active,
    parse_quantity,
    rollup_composite,
    validate_discount_input,
)


def _line(price, qty="1"):
    return CartLineItem(item_id="1", name="Item", unit_price=price, quantity=qty)


def test_percent_discount_totals():
    totals = compute_totals([_line("25.90", 2)], DiscountSpec(type="percent", value="10"))

    assert totals.subtotal == Decimal("51.80")
    assert totals.discount_applied == Decimal("5.18")
    assert totals.total == Decimal("46.62")


def test_freight_is_added_after_discount():
    totals = compute_totals(
        [_line("100")],
        DiscountSpec(type="fixo", value="10"),
        FreightSpec(value="15,50"),
    )
    assert totals.discount_applied == Decimal("10.00")
    assert totals.freight == Decimal("15.50")
    assert totals.total == Decimal("105.50")


@pytest.mark.parametrize(
    "spec,expected",
    [
        (DiscountSpec(type="fixed", value="500"), Decimal("51.80")),
        (DiscountSpec(type="percent", value="150"), Decimal("51.80")),
        (DiscountSpec(type="percent", value="-5"), Decimal("0")),
        (DiscountSpec(type="fixed", value="abc"), Decimal("0")),
        (DiscountSpec(type="percent", value=""), Decimal("0")),
        (None, Decimal("0")),
    ],
)
def test_discount_is_clamped_and_never_raises(spec, expected):
    assert compute_discount(Decimal("51.80"), spec) == expected


def test_discount_accepts_comma_decimal():
    assert compute_discount(Decimal("100"), DiscountSpec(type="percentual", value="2,5")) == Decimal("2.50")


def test_invalid_discount_is_reported_by_validator():
    with pytest.raises(InvalidDiscount):
        validate_discount_input("dez")
    with pytest.raises(InvalidDiscount):
        validate_discount_input("-1")
    assert validate_discount_input(" ") == Decimal("0")


def test_total_never_negative():
    totals = compute_totals([_line("10")], DiscountSpec(type="fixed", value="10"))
    assert totals.total == Decimal("0.00")


def test_parse_helpers():
    assert parse_decimal("R$ 1.234,56") == Decimal("1234.56")
    assert parse_decimal("1,234.5") == Decimal("1234.5")
    assert to_decimal("nan") == Decimal("0")
    assert to_decimal("abc", Decimal("1")) == Decimal("1")
    assert parse_quantity("1,5") == Decimal("1.5")
    assert parse_quantity("-3") == Decimal("0")


def test_rollup_composite_sums_components():
    comps = [
        CompositeComponent(item_id="A", quantity=2, unit_price=10, unit_cost=4),
        CompositeComponent(item_id="B", quantity=1, unit_price=5, unit_cost=2),
    ]
    assert rollup_composite(comps) == (Decimal("25.00"), Decimal("10.00"))
    assert rollup_composite(list(reversed(comps))) == (Decimal("25.00"), Decimal("10.00"))
    assert rollup_composite([]) == (Decimal("0.00"), Decimal("0.00"))


def test_promotion_window_is_inclusive():
    promo = Promotion(active=True, start=date(2026, 3, 1), end=date(2026, 3, 10), promo_price=30)

    assert is_promotion_active(promo, date(2026, 3, 1))
    assert is_promotion_active(promo, date(2026, 3, 10))
    assert not is_promotion_active(promo, date(2026, 2, 28))
    assert not is_promotion_active(promo, date(2026, 3, 11))


def test_promotion_inactive_flag_wins():
    promo = Promotion(active=False, start=date(2026, 3, 1), end=date(2026, 3, 10), promo_price=30)
    assert not is_promotion_active(promo, date(2026, 3, 5))
    assert not is_promotion_active(None, date(2026, 3, 5))


@freeze_time("2026-03-10 23:59:00")
def test_promotion_uses_today_by_default():
    promo = Promotion(active=True, start=date(2026, 3, 1), end=date(2026, 3, 10), promo_price=30)
    assert is_promotion_active(promo)


def test_open_ended_promotion():
    promo = Promotion(active=True, promo_price=30)
    assert is_promotion_active(promo, date(2030, 1, 1))
