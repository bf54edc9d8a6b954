from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from pdv_core.money import non_negative


class Promotion(BaseModel):
    active: bool = False
    start: Optional[date] = None
    end: Optional[date] = None
    promo_price: Decimal = Decimal("0")

    @field_validator("promo_price", mode="before")
    @classmethod
    def _price(cls, v):
        return non_negative(v)


class VariationOption(BaseModel):
    id: str
    name: Optional[str] = None
    # ex.: {"cor": "Azul", "tamanho": "M"}
    labels: dict[str, str] = Field(default_factory=dict)
    stock: Decimal = Decimal("0")
    price: Optional[Decimal] = None
    image: Optional[str] = None

    @field_validator("stock", mode="before")
    @classmethod
    def _stock(cls, v):
        return non_negative(v)

    def display_name(self) -> str:
        if self.name:
            return self.name
        parts = [v for v in self.labels.values() if v]
        return " / ".join(parts) if parts else self.id


class CompositeComponent(BaseModel):
    """componente de kit: preço e custo capturados no momento em que foi adicionado."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    name: str = ""
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    unit_cost: Decimal = Decimal("0")

    @field_validator("quantity", "unit_price", "unit_cost", mode="before")
    @classmethod
    def _non_negative(cls, v):
        return non_negative(v)

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def total_cost(self) -> Decimal:
        return self.unit_cost * self.quantity


class CatalogItem(BaseModel):
    id: str
    name: str
    code: Optional[str] = None
    unit: str = "un"
    sell_price: Decimal = Decimal("0")
    cost_price: Decimal = Decimal("0")
    stock: Decimal = Decimal("0")
    image: Optional[str] = None

    is_composite: bool = False
    promotion: Optional[Promotion] = None
    variations: list[VariationOption] = Field(default_factory=list)
    composite: list[CompositeComponent] = Field(default_factory=list)

    @field_validator("sell_price", "cost_price", "stock", mode="before")
    @classmethod
    def _non_negative(cls, v):
        return non_negative(v)

    @computed_field
    @property
    def controls_stock(self) -> bool:
        # kit sem variações é montado sob encomenda: não controla estoque.
        # kit com variações controla pelo estoque da variação escolhida.
        if self.is_composite and not self.variations:
            return False
        return True

    def find_variation(self, variation_id: str) -> Optional[VariationOption]:
        for v in self.variations:
            if v.id == str(variation_id):
                return v
        return None
