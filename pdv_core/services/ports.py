"""
Contratos dos colaboradores externos (catálogo, estoque, rascunhos, documentos).

Implementações de referência: `pdv_core.infra.memory` (em memória),
`pdv_core.infra.stores` (SQLAlchemy) e `pdv_core.integrations.drafts_api` (HTTP).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from pdv_core.schemas.cart import stock_key
from pdv_core.schemas.catalog import CatalogItem
from pdv_core.schemas.documents import DocumentReceipt, Draft, FinalizedDocument, Payment


@dataclass(frozen=True)
class StockMovement:
    item_id: str
    variation_id: Optional[str]
    quantity: Decimal
    line_label: str = ""

    @property
    def key(self) -> str:
        return stock_key(self.item_id, self.variation_id)


class CatalogSource(Protocol):
    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        ...


class Inventory(Protocol):
    def available(self, item_id: str, variation_id: Optional[str] = None) -> Decimal:
        ...

    def decrement(self, movements: Sequence[StockMovement], *, reference: str) -> None:
        """baixa autoritativa; levanta StockRejected com as linhas recusadas."""
        ...

    def restock(self, movements: Sequence[StockMovement], *, reference: str) -> None:
        """devolução (edição que reduz quantidade); mesma idempotência por referência."""
        ...


class DraftStore(Protocol):
    def get_draft(self, session_key: str) -> Optional[Draft]:
        ...

    def save_draft(self, session_key: str, draft: Optional[Draft]) -> None:
        """draft=None equivale a limpar o slot."""
        ...

    def clear_draft(self, session_key: str) -> None:
        ...


class DocumentStore(Protocol):
    def finalize(self, document: FinalizedDocument) -> DocumentReceipt:
        ...

    def append_payment(self, document_id: str, payment: Payment) -> None:
        ...
