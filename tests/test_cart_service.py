from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from pdv_core.errors import CartFinalized, CompositePriceLocked, LineNotFound
from pdv_core.infra.memory import InMemoryCatalog
from pdv_core.schemas.cart import Cart
from pdv_core.services.cart_service import (
    STATE_BUILDING,
    STATE_EMPTY,
    STATE_FINALIZED,
    STATE_READY,
    CartSession,
    normalize_customer,
)
from pdv_core.services.pricing import compute_subtotal


def _session(**kwargs):
    return CartSession(today=lambda: date(2026, 1, 15), **kwargs)


def _assert_consistent(cart: Cart):
    assert cart.subtotal == sum((l.unit_price * l.quantity for l in cart.lines), Decimal("0"))
    assert Decimal("0") <= cart.discount_applied <= cart.subtotal


def test_totals_stay_consistent_through_mutations(caneca, camiseta):
    session = _session()
    a = session.add_line(caneca, 2)
    _assert_consistent(session.cart)

    b = session.add_line(camiseta, 1, "v-azul")
    session.set_discount(type="percent", value="10")
    _assert_consistent(session.cart)

    session.update_line(a.line_id, "quantity", "3")
    session.update_line(b.line_id, "unit_price", "40")
    _assert_consistent(session.cart)

    session.remove_line(a.line_id)
    cart = session.cart
    _assert_consistent(cart)
    assert cart.subtotal == Decimal("40.00")
    assert cart.discount_applied == Decimal("4.00")
    assert cart.total == Decimal("36.00")


def test_same_item_and_variation_merges(camiseta):
    session = _session()
    session.add_line(camiseta, 1, "v-azul")
    session.add_line(camiseta, 2, "v-azul")
    session.add_line(camiseta, 1, "v-preta")

    cart = session.cart
    assert len(cart.lines) == 2
    assert cart.find_by_key("20", "v-azul").quantity == Decimal("3")


def test_fractional_quantity_accepts_comma(caneca):
    session = _session()
    line = session.add_line({**caneca, "unidade_medida": "kg"}, "1,5")
    assert line.quantity == Decimal("1.5")
    assert session.cart.subtotal == Decimal("75.00")


def test_unknown_line_is_rejected(caneca):
    session = _session()
    session.add_line(caneca)
    with pytest.raises(LineNotFound):
        session.update_line("nope", "quantity", 2)
    with pytest.raises(LineNotFound):
        session.remove_line("nope")
    with pytest.raises(ValueError):
        session.update_line(session.cart.lines[0].line_id, "name", "x")


def test_kit_price_follows_components_in_any_order(caneca):
    comp_a = {"item_id": "A", "name": "Caneca", "quantity": 2, "unit_price": 10, "unit_cost": 4}
    comp_b = {"item_id": "B", "name": "Chaveiro", "quantity": 1, "unit_price": 5, "unit_cost": 2}

    s1 = _session()
    l1 = s1.add_line(caneca)
    s1.add_component(l1.line_id, comp_a)
    line = s1.add_component(l1.line_id, comp_b)
    assert line.unit_price == Decimal("25.00")
    assert line.unit_cost == Decimal("10.00")

    s2 = _session()
    l2 = s2.add_line(caneca)
    s2.add_component(l2.line_id, comp_b)
    assert s2.add_component(l2.line_id, comp_a).unit_price == Decimal("25.00")

    line = s1.remove_component(l1.line_id, "B")
    assert line.unit_price == Decimal("20.00")
    assert s1.cart.subtotal == Decimal("20.00")


def test_kit_component_resize_and_merge(kit):
    session = _session()
    line = session.add_line(kit)
    assert line.unit_price == Decimal("25.00")

    line = session.add_component(line.line_id, {"item_id": "B", "quantity": 1, "unit_price": 5})
    assert line.unit_price == Decimal("30.00")
    assert len(line.components) == 2

    line = session.resize_component(line.line_id, "A", 1)
    assert line.unit_price == Decimal("20.00")

    line = session.resize_component(line.line_id, "A", 0)
    assert [c.item_id for c in line.components] == ["B"]

    line = session.remove_component(line.line_id, "B")
    assert line.unit_price == Decimal("0.00")

    with pytest.raises(LineNotFound):
        session.remove_component(line.line_id, "Z")


def test_kit_price_is_locked(kit):
    session = _session()
    line = session.add_line(kit)
    before = session.cart

    with pytest.raises(CompositePriceLocked):
        session.update_line(line.line_id, "unit_price", "99")
    with pytest.raises(CompositePriceLocked):
        session.update_line(line.line_id, "unit_cost", "1")

    assert session.cart == before


def test_manual_price_drops_promotion(caneca):
    record = {
        **caneca,
        "promotion": {"active": True, "start": "2026-01-01", "end": "2026-01-31", "promo_price": "45"},
    }
    session = _session()
    line = session.add_line(record)
    assert line.promotion is not None

    line = session.update_line(line.line_id, "unit_price", "48")
    assert line.promotion is None
    assert line.unit_price == Decimal("48")


def test_variation_change_reprices_and_merges(camiseta):
    session = _session()
    azul = session.add_line(camiseta, 1, "v-azul")
    assert azul.unit_price == Decimal("42.00")

    preta = session.update_line(azul.line_id, "variation", "v-preta")
    assert preta.line_id == azul.line_id
    assert preta.unit_price == Decimal("39.90")
    assert preta.variation_label == "Preta / G"

    other = session.add_line(camiseta, 1, "v-azul")
    merged = session.update_line(other.line_id, "variation", "v-preta")

    cart = session.cart
    assert len(cart.lines) == 1
    assert merged.quantity == Decimal("2")
    assert cart.lines[0].variation_id == "v-preta"


def test_variation_change_uses_catalog_source(camiseta):
    catalog = InMemoryCatalog([camiseta])
    session = _session(catalog=catalog)
    line = session.add_line(catalog.get_item("20"), 1, "v-preta")

    # nova sessão sem o cache de itens: busca no catálogo
    restored = _session(cart=session.cart, catalog=catalog)
    line = restored.update_line(line.line_id, "variation", "v-azul")
    assert line.unit_price == Decimal("42.00")


def test_state_transitions_and_finalized_guard(caneca):
    session = _session()
    assert session.state == STATE_EMPTY

    session.set_customer("Maria")
    assert session.state == STATE_BUILDING

    session.add_line(caneca)
    assert session.state == STATE_READY

    session.mark_finalized()
    assert session.state == STATE_FINALIZED
    with pytest.raises(CartFinalized):
        session.add_line(caneca)

    session.clear()
    assert session.state == STATE_EMPTY


def test_listeners_receive_priced_snapshots(caneca):
    seen = []
    resets = []
    session = _session()
    session.subscribe(seen.append, resets.append)

    session.add_line(caneca, 2)
    session.set_freight("10")

    assert [c.total for c in seen] == [Decimal("100.00"), Decimal("110.00")]
    seen[-1].lines.clear()
    assert len(session.cart.lines) == 1

    session.set_seller("7", "Ana")
    session.clear()
    assert len(resets) == 1
    assert resets[0].seller_id == "7"
    assert resets[0].lines == []


def test_header_setters(caneca):
    session = _session()
    session.set_kind("quote")
    session.set_name("Orçamento escola")
    session.set_notes("entregar sexta")
    session.set_customer({"id": 55, "nome_completo": "Escola Alfa", "cpf_cnpj": "123"})
    session.set_freight({"value": "12,00", "option_id": "pac", "delivery_days": 3})

    cart = session.cart
    assert cart.kind == "quote"
    assert cart.customer.id == "55"
    assert cart.customer.is_registered
    assert cart.freight.option_id == "pac"
    assert cart.total == Decimal("12.00")

    with pytest.raises(ValueError):
        session.set_kind("nota")


def test_normalize_customer_variants():
    assert normalize_customer(None) is None
    assert normalize_customer("  ") is None
    walk_in = normalize_customer("João")
    assert walk_in.name == "João" and not walk_in.is_registered


def test_subtotal_helper_matches_cart(caneca):
    session = _session()
    session.add_line(caneca, 3)
    cart = session.cart
    assert compute_subtotal(cart.lines) == cart.subtotal == Decimal("150.00")
