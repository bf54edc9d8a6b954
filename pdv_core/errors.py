from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional


class PDVError(Exception):
    pass


class InvalidCatalogReference(PDVError, ValueError):
    pass


class InvalidDiscount(PDVError, ValueError):
    pass


class InsufficientStock(PDVError):
    """
    rejeição recuperável: o carrinho não foi alterado.
    quem chamou decide se tenta de novo com quantidade menor.
    """

    def __init__(
        self,
        available: Decimal,
        requested: Decimal,
        *,
        item_id: Optional[str] = None,
        variation_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        self.available = available
        self.requested = requested
        self.item_id = item_id
        self.variation_id = variation_id
        self.name = name
        label = name or item_id or "item"
        super().__init__(
            f"Estoque insuficiente para {label}: disponível {available}, solicitado {requested}."
        )

    def as_dict(self) -> dict:
        return {
            "reason": "insufficient_stock",
            "item_id": self.item_id,
            "variation_id": self.variation_id,
            "available": str(self.available),
            "requested": str(self.requested),
        }


class LineNotFound(PDVError, KeyError):
    def __str__(self) -> str:
        return f"Item do carrinho não encontrado: {self.args[0]}"


class CompositePriceLocked(PDVError, ValueError):
    pass


class CartFinalized(PDVError):
    pass


class StoreError(RuntimeError):
    pass


class DraftPersistenceFailure(StoreError):
    pass


class StockRejected(StoreError):
    """o colaborador de estoque recusou a baixa (contagem autoritativa)."""

    def __init__(self, message: str, lines: Iterable[str] = ()) -> None:
        self.lines = list(lines)
        super().__init__(message)


class FinalizeFailure(PDVError):
    def __init__(self, message: str, lines: Iterable[str] = ()) -> None:
        self.lines = list(lines)
        super().__init__(message)


class PaymentRejected(PDVError, ValueError):
    pass
