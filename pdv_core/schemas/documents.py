from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pdv_core.money import non_negative, quantize_money
from pdv_core.schemas.cart import Cart, CustomerRef, DiscountSpec, DocumentKind, FreightSpec, PromotionSnapshot
from pdv_core.schemas.catalog import CompositeComponent

DraftStatus = Literal["draft", "finalized"]
DocumentStatus = Literal["finalized", "pending"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str
    nominal_value: Decimal
    # taxa da maquininha (%); o valor efetivo já inclui a taxa
    fee_percent: Decimal = Decimal("0")
    effective_value: Decimal = Decimal("0")
    paid_at: datetime = Field(default_factory=_utcnow)

    @field_validator("nominal_value", "fee_percent", mode="before")
    @classmethod
    def _non_negative(cls, v):
        return non_negative(v)

    @model_validator(mode="before")
    @classmethod
    def _effective(cls, data):
        if isinstance(data, dict) and data.get("effective_value") is None:
            nominal = non_negative(data.get("nominal_value"))
            fee = non_negative(data.get("fee_percent"))
            effective = nominal * (Decimal("1") + fee / Decimal("100"))
            data = {**data, "effective_value": quantize_money(effective)}
        return data


class DocumentLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    variation_id: Optional[str] = None
    variation_label: Optional[str] = None
    name: str
    code: Optional[str] = None
    unit: str = "un"
    quantity: Decimal
    unit_price: Decimal
    unit_cost: Decimal
    total: Decimal
    controls_stock: bool = True
    promotion: Optional[PromotionSnapshot] = None
    components: tuple[CompositeComponent, ...] = ()


class DocumentReceipt(BaseModel):
    id: str
    display_code: Optional[str] = None


class FinalizedDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_code: Optional[str] = None
    type: DocumentKind
    status: DocumentStatus
    issued_at: datetime
    valid_until: Optional[datetime] = None

    customer: Optional[CustomerRef] = None
    seller_id: Optional[str] = None
    seller_name: Optional[str] = None

    lines: tuple[DocumentLine, ...]
    subtotal: Decimal
    discount: DiscountSpec
    discount_applied: Decimal
    freight: FreightSpec
    total: Decimal

    payments: tuple[Payment, ...] = ()
    saldo_pendente: Decimal = Decimal("0.00")
    notes: str = ""

    edited_from_id: Optional[str] = None
    converted_from_quote_id: Optional[str] = None
    provenance: Optional[str] = None

    @property
    def paid_total(self) -> Decimal:
        return sum((p.effective_value for p in self.payments), Decimal("0"))

    @property
    def is_settled(self) -> bool:
        return self.saldo_pendente <= 0


class Draft(BaseModel):
    session_key: str
    cart: Cart
    status: DraftStatus = "draft"
    created_at: datetime = Field(default_factory=_utcnow)
    saved_at: datetime = Field(default_factory=_utcnow)
