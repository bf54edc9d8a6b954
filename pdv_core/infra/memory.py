"""
Colaboradores em memória (testes, modo offline do caixa).

Os rascunhos ficam serializados em JSON, igual ao que iria pro servidor,
então a restauração passa pelo mesmo caminho de validação.
"""

from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

from pdv_core.errors import StockRejected, StoreError
from pdv_core.money import ZERO, to_decimal
from pdv_core.schemas.cart import stock_key
from pdv_core.schemas.catalog import CatalogItem
from pdv_core.schemas.documents import DocumentReceipt, Draft, FinalizedDocument, Payment
from pdv_core.services.catalog_resolver import normalize_catalog_record
from pdv_core.services.id_gen import generate_public_id
from pdv_core.services.ports import StockMovement

logger = logging.getLogger(__name__)

DISPLAY_PREFIX = {"sale": "VEN", "quote": "ORC"}


class InMemoryCatalog:
    def __init__(self, records: Iterable[Any] = ()) -> None:
        self._items: dict[str, CatalogItem] = {}
        for raw in records:
            self.add(raw)

    def add(self, raw: Any) -> CatalogItem:
        item = raw if isinstance(raw, CatalogItem) else normalize_catalog_record(raw)
        self._items[item.id] = item
        return item

    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        return self._items.get(str(item_id))


class InMemoryInventory:
    """
    contagem autoritativa por item/variação.

    rules:
      - baixa é tudo-ou-nada: se alguma linha não cabe, nada é baixado
      - a mesma referência só é aplicada uma vez (baixa ou devolução)
    """

    def __init__(self, counts: Optional[Mapping[str, Any]] = None) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, Decimal] = {k: to_decimal(v) for k, v in (counts or {}).items()}
        self._applied: set[str] = set()
        self.decrement_calls = 0
        self.restock_calls = 0

    def set(self, item_id: str, quantity: Any, variation_id: Optional[str] = None) -> None:
        with self._lock:
            self._counts[stock_key(item_id, variation_id)] = to_decimal(quantity)

    def available(self, item_id: str, variation_id: Optional[str] = None) -> Decimal:
        with self._lock:
            return self._counts.get(stock_key(item_id, variation_id), ZERO)

    def decrement(self, movements: Sequence[StockMovement], *, reference: str) -> None:
        with self._lock:
            self.decrement_calls += 1
            if reference in self._applied:
                logger.info("[stock] baixa %s já aplicada: ignorada", reference)
                return

            needed = self._group(movements)
            refused = [k for k, qty in needed.items() if qty > self._counts.get(k, ZERO)]
            if refused:
                raise StockRejected(f"Estoque insuficiente: {', '.join(refused)}", lines=refused)

            for k, qty in needed.items():
                self._counts[k] = self._counts.get(k, ZERO) - qty
            self._applied.add(reference)

    def restock(self, movements: Sequence[StockMovement], *, reference: str) -> None:
        with self._lock:
            self.restock_calls += 1
            if reference in self._applied:
                logger.info("[stock] devolução %s já aplicada: ignorada", reference)
                return
            for k, qty in self._group(movements).items():
                self._counts[k] = self._counts.get(k, ZERO) + qty
            self._applied.add(reference)

    @staticmethod
    def _group(movements: Sequence[StockMovement]) -> dict[str, Decimal]:
        grouped: dict[str, Decimal] = {}
        for m in movements:
            grouped[m.key] = grouped.get(m.key, ZERO) + m.quantity
        return grouped


class InMemoryDraftStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: dict[str, str] = {}
        self.save_calls = 0

    def get_draft(self, session_key: str) -> Optional[Draft]:
        with self._lock:
            raw = self._slots.get(session_key)
        if raw is None:
            return None
        return Draft.model_validate_json(raw)

    def save_draft(self, session_key: str, draft: Optional[Draft]) -> None:
        if draft is None:
            self.clear_draft(session_key)
            return
        payload = draft.model_dump_json()
        with self._lock:
            self.save_calls += 1
            # slot único por sessão: sempre sobrescreve
            self._slots[session_key] = payload

    def clear_draft(self, session_key: str) -> None:
        with self._lock:
            self._slots.pop(session_key, None)

    def __contains__(self, session_key: str) -> bool:
        return session_key in self._slots


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.documents: dict[str, FinalizedDocument] = {}
        self.payments: dict[str, list[Payment]] = {}
        self._codes: dict[str, str] = {}

    def finalize(self, document: FinalizedDocument) -> DocumentReceipt:
        with self._lock:
            code = self._codes.get(document.id)
            if code is None:
                code = self._unique_code(DISPLAY_PREFIX.get(document.type, "DOC"))
                self._codes[document.id] = code
            self.documents[document.id] = document.model_copy(update={"display_code": code})
            self.payments.setdefault(document.id, list(document.payments))
        return DocumentReceipt(id=document.id, display_code=code)

    def _unique_code(self, prefix: str) -> str:
        used = set(self._codes.values())
        for _ in range(30):
            code = generate_public_id(prefix)
            if code not in used:
                return code
        raise StoreError(f"Falha ao gerar código único para prefix={prefix}.")

    def append_payment(self, document_id: str, payment: Payment) -> None:
        with self._lock:
            if document_id not in self.documents:
                raise StoreError(f"Documento não encontrado: {document_id}")
            self.payments[document_id].append(payment)

    def get(self, document_id: str) -> Optional[FinalizedDocument]:
        return self.documents.get(document_id)
