"""
Orçamento de envelopamento: preço por área envelopada + serviços adicionais.

    área da peça   = altura × largura × quantidade (m²)
    material       = área × preço do m² (peça "sem medidas": preço × quantidade)
    serviço m²     = preço × área da peça (não se aplica a peça sem medidas)
    serviço un     = preço × quantidade
    total          = material + serviços − desconto + frete
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from pdv_core.money import ZERO, non_negative, quantize_money, to_decimal
from pdv_core.schemas.cart import CustomerRef, DiscountSpec, FreightSpec, new_draft_id
from pdv_core.schemas.catalog import CatalogItem
from pdv_core.services.pricing import compute_discount, is_promotion_active

ServiceUnit = Literal["m2", "un"]


class AddOnService(BaseModel):
    id: str
    name: str = ""
    price: Decimal = Decimal("0")
    unit: ServiceUnit = "m2"

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        return str(v)

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, v):
        return non_negative(v)

    @field_validator("unit", mode="before")
    @classmethod
    def _unit(cls, v):
        # unidade desconhecida é tratada como m²
        if isinstance(v, str) and v.strip().lower() in ("un", "unidade", "unid"):
            return "un"
        return "m2"


class WrapPart(BaseModel):
    description: str = ""
    height_m: Decimal = Decimal("0")
    width_m: Decimal = Decimal("0")
    quantity: int = 1
    no_dimensions: bool = False
    # material específico da peça (senão usa o do orçamento)
    material: Optional[CatalogItem] = None
    services: list[str] = Field(default_factory=list)

    @field_validator("height_m", "width_m", mode="before")
    @classmethod
    def _measure(cls, v):
        return non_negative(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, v):
        q = to_decimal(v)
        return int(q) if q > 0 else 0

    @field_validator("services", mode="before")
    @classmethod
    def _services(cls, v):
        # aceita lista de ids ou o mapa {id: marcado}
        if isinstance(v, dict):
            return [str(k) for k, checked in v.items() if checked]
        return [str(s) for s in (v or [])]

    @property
    def area_m2(self) -> Decimal:
        if self.no_dimensions:
            return ZERO
        return self.height_m * self.width_m * self.quantity


class WrapQuote(BaseModel):
    id: str = Field(default_factory=new_draft_id)
    name: str = ""
    customer: Optional[CustomerRef] = None
    material: Optional[CatalogItem] = None
    parts: list[WrapPart] = Field(default_factory=list)
    discount: DiscountSpec = Field(default_factory=DiscountSpec)
    freight: FreightSpec = Field(default_factory=FreightSpec)
    notes: str = ""


class WrapTotals(BaseModel):
    area_m2: Decimal = Decimal("0")
    material_total: Decimal = Decimal("0.00")
    services_total: Decimal = Decimal("0.00")
    subtotal: Decimal = Decimal("0.00")
    discount_applied: Decimal = Decimal("0.00")
    freight: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")


def material_price(item: Optional[CatalogItem], today: Optional[date] = None) -> Decimal:
    if item is None:
        return ZERO
    if is_promotion_active(item.promotion, today) and item.promotion.promo_price > 0:
        return item.promotion.promo_price
    return item.sell_price


def _service_cost(service: AddOnService, part: WrapPart) -> Decimal:
    if service.unit == "un":
        return service.price * part.quantity
    if part.no_dimensions:
        return ZERO
    return service.price * part.area_m2


def price_wrap_quote(
    quote: WrapQuote,
    services: Iterable[AddOnService] = (),
    *,
    today: Optional[date] = None,
) -> WrapTotals:
    catalog = {s.id: s for s in services}

    area = ZERO
    material_total = ZERO
    services_total = ZERO
    for part in quote.parts:
        area += part.area_m2
        price = material_price(part.material or quote.material, today)
        if part.no_dimensions:
            material_total += price * part.quantity
        else:
            material_total += price * part.area_m2
        for service_id in part.services:
            service = catalog.get(service_id)
            if service is not None:
                services_total += _service_cost(service, part)

    material_total = quantize_money(material_total)
    services_total = quantize_money(services_total)
    subtotal = material_total + services_total
    discount_applied = compute_discount(subtotal, quote.discount)
    freight = quantize_money(quote.freight.value)
    return WrapTotals(
        area_m2=area.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP),
        material_total=material_total,
        services_total=services_total,
        subtotal=subtotal,
        discount_applied=discount_applied,
        freight=freight,
        total=quantize_money(max(ZERO, subtotal - discount_applied + freight)),
    )
