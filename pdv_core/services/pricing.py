"""
Cálculo de totais do carrinho/orçamento.

Tudo aqui é função pura de (itens, desconto, frete): nada levanta erro por
entrada ruim do usuário; valores inválidos viram 0.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Tuple

from pdv_core.errors import InvalidDiscount
from pdv_core.money import ZERO, parse_decimal, quantize_money, to_decimal
from pdv_core.schemas.cart import Cart, CartLineItem, DiscountSpec, FreightSpec, Totals
from pdv_core.schemas.catalog import CompositeComponent, Promotion

logger = logging.getLogger(__name__)


def _as_day(v: date | datetime) -> date:
    return v.date() if isinstance(v, datetime) else v


def is_promotion_active(promotion: Optional[Promotion], today: Optional[date] = None) -> bool:
    # comparação por dia (sem horário); início e fim inclusivos
    if promotion is None or not promotion.active:
        return False
    today = _as_day(today or date.today())
    if promotion.start is not None and today < _as_day(promotion.start):
        return False
    if promotion.end is not None and today > _as_day(promotion.end):
        return False
    return True


def rollup_composite(components: Iterable[CompositeComponent]) -> Tuple[Decimal, Decimal]:
    price = ZERO
    cost = ZERO
    for comp in components:
        price += comp.total_price
        cost += comp.total_cost
    return quantize_money(price), quantize_money(cost)


def parse_quantity(value: Any) -> Decimal:
    q = to_decimal(value)
    return q if q > 0 else ZERO


def validate_discount_input(value: Any) -> Decimal:
    if value is None or (isinstance(value, str) and not value.strip()):
        return ZERO
    try:
        d = parse_decimal(value)
    except ValueError:
        raise InvalidDiscount(f"Desconto inválido: {value!r}")
    if d < 0:
        raise InvalidDiscount(f"Desconto não pode ser negativo: {value!r}")
    return d


def coerce_discount_value(value: Any) -> Decimal:
    try:
        return validate_discount_input(value)
    except InvalidDiscount as e:
        logger.debug("[pricing] %s -> 0", e)
        return ZERO


def compute_subtotal(lines: Iterable[CartLineItem]) -> Decimal:
    return quantize_money(sum((line.unit_price * parse_quantity(line.quantity) for line in lines), ZERO))


def compute_discount(subtotal: Decimal, spec: Optional[DiscountSpec]) -> Decimal:
    if spec is None:
        return quantize_money(ZERO)
    value = coerce_discount_value(spec.value)
    if spec.type == "percent":
        raw = subtotal * (value / Decimal("100"))
    else:
        raw = value
    return quantize_money(max(ZERO, min(raw, subtotal)))


def compute_totals(
    lines: Iterable[CartLineItem],
    discount: Optional[DiscountSpec] = None,
    freight: Optional[FreightSpec] = None,
) -> Totals:
    subtotal = compute_subtotal(lines)
    discount_applied = compute_discount(subtotal, discount)
    freight_value = quantize_money(freight.value if freight is not None else ZERO)
    total = quantize_money(max(ZERO, subtotal - discount_applied + freight_value))
    return Totals(
        subtotal=subtotal,
        discount_applied=discount_applied,
        freight=freight_value,
        total=total,
    )


def apply_totals(cart: Cart) -> Cart:
    totals = compute_totals(cart.lines, cart.discount, cart.freight)
    cart.subtotal = totals.subtotal
    cart.discount_applied = totals.discount_applied
    cart.total = totals.total
    return cart


def reprice_composite_line(line: CartLineItem) -> CartLineItem:
    # kit: preço e custo sempre derivados dos componentes (kit vazio = 0)
    line.unit_price, line.unit_cost = rollup_composite(line.components)
    return line
