from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from pdv_core.money import non_negative
from pdv_core.schemas.catalog import CompositeComponent

DocumentKind = Literal["sale", "quote"]
DiscountType = Literal["percent", "fixed"]

DRAFT_ID_PREFIX = "rascunho-"


def new_draft_id() -> str:
    return f"{DRAFT_ID_PREFIX}{uuid.uuid4().hex[:12]}"


def new_line_id() -> str:
    return uuid.uuid4().hex


def stock_key(item_id: str, variation_id: Optional[str] = None) -> str:
    return f"{item_id}:{variation_id}" if variation_id else str(item_id)


class PromotionSnapshot(BaseModel):
    original_price: Decimal
    promo_price: Decimal


class CartLineItem(BaseModel):
    line_id: str = Field(default_factory=new_line_id)
    item_id: str
    variation_id: Optional[str] = None
    variation_label: Optional[str] = None

    name: str
    code: Optional[str] = None
    unit: str = "un"
    image: Optional[str] = None

    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    unit_cost: Decimal = Decimal("0")

    controls_stock: bool = True
    # snapshot de estoque usado na última validação
    available_stock: Decimal = Decimal("0")
    promotion: Optional[PromotionSnapshot] = None

    is_composite: bool = False
    components: list[CompositeComponent] = Field(default_factory=list)

    @field_validator("quantity", "unit_price", "unit_cost", "available_stock", mode="before")
    @classmethod
    def _non_negative(cls, v):
        return non_negative(v)

    @property
    def key(self) -> tuple[str, Optional[str]]:
        return (self.item_id, self.variation_id)

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def price_locked(self) -> bool:
        return self.is_composite and bool(self.components)

    def label(self) -> str:
        if self.variation_label:
            return f"{self.name} ({self.variation_label})"
        return self.name


class DiscountSpec(BaseModel):
    type: DiscountType = "percent"
    # valor como digitado; a conversão fica com o pricing (nunca levanta erro)
    value: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v in ("percentual", "percentage", "%"):
                return "percent"
            if v in ("fixo", "valor", "value"):
                return "fixed"
        return v

    @field_validator("value", mode="before")
    @classmethod
    def _value(cls, v):
        if v is None:
            return ""
        return str(v)


class FreightSpec(BaseModel):
    value: Decimal = Decimal("0")
    option_id: Optional[str] = None
    courier_id: Optional[str] = None
    delivery_days: Optional[int] = None
    delivered_by: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _value(cls, v):
        return non_negative(v)


class CustomerRef(BaseModel):
    # id None => cliente avulso (nome livre)
    id: Optional[str] = None
    name: str = ""
    document: Optional[str] = None

    @property
    def is_registered(self) -> bool:
        return bool(self.id)


class CommittedStock(BaseModel):
    item_id: str
    variation_id: Optional[str] = None
    quantity: Decimal


class Totals(BaseModel):
    subtotal: Decimal = Decimal("0.00")
    discount_applied: Decimal = Decimal("0.00")
    freight: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")


class Cart(BaseModel):
    id: str = Field(default_factory=new_draft_id)
    kind: DocumentKind = "sale"
    name: str = ""
    customer: Optional[CustomerRef] = None
    lines: list[CartLineItem] = Field(default_factory=list)
    discount: DiscountSpec = Field(default_factory=DiscountSpec)
    freight: FreightSpec = Field(default_factory=FreightSpec)
    notes: str = ""

    seller_id: Optional[str] = None
    seller_name: Optional[str] = None

    # edição de pré-venda já persistida / conversão de orçamento
    editing_document_id: Optional[str] = None
    source_quote_id: Optional[str] = None
    # quantidades já baixadas pelo documento em edição
    committed_stock: list[CommittedStock] = Field(default_factory=list)

    # derivados (sempre recalculados pelo pricing)
    subtotal: Decimal = Decimal("0.00")
    discount_applied: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")

    def find_line(self, line_id: str) -> Optional[CartLineItem]:
        for line in self.lines:
            if line.line_id == line_id:
                return line
        return None

    def find_by_key(self, item_id: str, variation_id: Optional[str]) -> Optional[CartLineItem]:
        for line in self.lines:
            if line.key == (item_id, variation_id):
                return line
        return None

    def committed_for(self, item_id: str, variation_id: Optional[str] = None) -> Decimal:
        return sum(
            (c.quantity for c in self.committed_stock if (c.item_id, c.variation_id) == (item_id, variation_id)),
            Decimal("0"),
        )
