# pdv_core/services/finalizer.py
from __future__ import annotations

import hashlib
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from dateutil.relativedelta import relativedelta

from pdv_core.errors import FinalizeFailure, PaymentRejected, StockRejected, StoreError
from pdv_core.money import ZERO, quantize_money
from pdv_core.schemas.cart import Cart, CartLineItem
from pdv_core.schemas.documents import DocumentLine, FinalizedDocument, Payment
from pdv_core.services.cart_service import CartSession
from pdv_core.services.draft_service import discard_draft
from pdv_core.services.id_gen import edit_reference, provisional_document_id
from pdv_core.services.ports import DocumentStore, DraftStore, Inventory, StockMovement
from pdv_core.services.pricing import compute_totals, parse_quantity

logger = logging.getLogger(__name__)

# ações concluídas guardadas para devolver o mesmo documento numa repetição
ACTION_CACHE_SIZE = 128

StockKey = tuple[str, Optional[str]]

_FINGERPRINT_FIELDS = {
    "kind",
    "customer",
    "lines",
    "discount",
    "freight",
    "notes",
    "seller_id",
    "seller_name",
    "editing_document_id",
    "source_quote_id",
    "committed_stock",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_saldo(total: Decimal, payments: Iterable[Payment]) -> Decimal:
    paid = sum((p.effective_value for p in payments), ZERO)
    return quantize_money(max(ZERO, total - paid))


def _fingerprint(cart: Cart, doc_type: str, payments: tuple[Payment, ...]) -> str:
    parts = [doc_type, cart.model_dump_json(include=_FINGERPRINT_FIELDS)]
    parts.extend(p.model_dump_json(exclude={"paid_at"}) for p in payments)
    return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()


def _stock_target(cart: Cart) -> dict[StockKey, Decimal]:
    """quanto cada item/variação precisa movimentar: carrinho menos o já baixado."""
    target: dict[StockKey, Decimal] = {}
    for line in cart.lines:
        if line.controls_stock:
            target[line.key] = target.get(line.key, ZERO) + parse_quantity(line.quantity)
    for c in cart.committed_stock:
        k = (c.item_id, c.variation_id)
        target[k] = target.get(k, ZERO) - c.quantity
    return target


def _snapshot_line(line: CartLineItem) -> DocumentLine:
    # cópia por valor: mudanças futuras no catálogo não alteram o documento
    qty = parse_quantity(line.quantity)
    return DocumentLine(
        item_id=line.item_id,
        variation_id=line.variation_id,
        variation_label=line.variation_label,
        name=line.name,
        code=line.code,
        unit=line.unit,
        quantity=qty,
        unit_price=line.unit_price,
        unit_cost=line.unit_cost,
        total=quantize_money(line.unit_price * qty),
        controls_stock=line.controls_stock,
        promotion=line.promotion,
        components=tuple(line.components),
    )


@dataclass
class _FinalizeAction:
    document_id: str
    reference: str
    fingerprint: str = ""
    # saldo já movimentado no estoque por esta ação
    applied: dict[StockKey, Decimal] = field(default_factory=dict)
    commits: int = 0
    document: Optional[FinalizedDocument] = None

    def stock_reference(self) -> str:
        if self.commits == 0:
            return self.reference
        return f"{self.reference}:{self.commits}"


class DocumentFinalizer:
    """
    converte carrinho/orçamento em documento imutável.

    rules:
      - carrinho precisa ter pelo menos 1 item
      - edição de pré-venda reusa o id; conversão de orçamento reusa o id do orçamento
      - venda: cada unidade controlada é baixada uma única vez. retentativa
        da mesma ação só movimenta o que mudou no carrinho desde a tentativa anterior
      - edição de venda movimenta só a diferença para o documento original
        (aumento baixa, redução devolve), com referência própria
      - repetir uma ação já concluída com o mesmo carrinho devolve o mesmo documento
      - baixa recusada vira FinalizeFailure com as linhas culpadas
    """

    def __init__(
        self,
        documents: DocumentStore,
        inventory: Optional[Inventory] = None,
        drafts: Optional[DraftStore] = None,
        *,
        quote_validity_days: Optional[int] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if quote_validity_days is None:
            from pdv_core.config import get_settings

            quote_validity_days = get_settings().quote_validity_days
        self.documents = documents
        self.inventory = inventory
        self.drafts = drafts
        self.quote_validity_days = quote_validity_days
        self._now = now or _utcnow
        self._actions: OrderedDict[str, _FinalizeAction] = OrderedDict()
        self._action_by_document: dict[str, str] = {}

    @staticmethod
    def action_key(cart: Cart) -> str:
        return cart.editing_document_id or cart.source_quote_id or cart.id

    def finalize(
        self,
        target: Union[Cart, CartSession],
        *,
        doc_type: Optional[str] = None,
        payments: Iterable[Union[Payment, Mapping[str, Any]]] = (),
        session_key: Optional[str] = None,
    ) -> FinalizedDocument:
        session = target if isinstance(target, CartSession) else None
        cart = session.cart if session is not None else target.model_copy(deep=True)
        doc_type = doc_type or cart.kind
        if doc_type not in ("sale", "quote"):
            raise ValueError(f"Tipo de documento inválido: {doc_type}")

        if not cart.lines:
            raise FinalizeFailure("Carrinho vazio: adicione produtos para finalizar.")

        received = tuple(
            p if isinstance(p, Payment) else Payment.model_validate(p) for p in payments
        ) if doc_type == "sale" else ()

        key = self.action_key(cart)
        fingerprint = _fingerprint(cart, doc_type, received)
        action = self._actions.get(key)
        if action is not None and action.document is not None:
            if action.fingerprint == fingerprint:
                # mesma ação finalizada de novo: devolve o mesmo documento, sem efeitos
                logger.info("[finalize] %s já finalizado (id=%s)", key, action.document.id)
                return action.document
            # mesmo documento com conteúdo novo (nova edição): outra ação
            action = None

        if action is None:
            action = self._new_action(cart, doc_type)
            self._remember(key, action)
        action.fingerprint = fingerprint

        document = self._build_document(cart, action.document_id, doc_type, received)

        if doc_type == "sale":
            self._sync_stock(cart, action)

        try:
            receipt = self.documents.finalize(document)
        except StoreError as e:
            logger.error("[finalize] falha ao salvar documento %s: %s", action.document_id, e)
            raise FinalizeFailure(f"Não foi possível salvar o documento: {e}")

        # id/código definitivos do armazenamento
        document = document.model_copy(
            update={"id": receipt.id, "display_code": receipt.display_code or document.display_code}
        )
        action.document = document
        self._action_by_document[document.id] = key

        if self.drafts is not None and session_key:
            discard_draft(self.drafts, session_key)
        if session is not None:
            session.mark_finalized()

        logger.info(
            "[finalize] %s %s total=%s saldo=%s",
            doc_type, document.id, document.total, document.saldo_pendente,
        )
        return document

    def _new_action(self, cart: Cart, doc_type: str) -> _FinalizeAction:
        doc_id = cart.editing_document_id
        if doc_id is None and doc_type == "sale" and cart.source_quote_id:
            doc_id = cart.source_quote_id
        doc_id = doc_id or provisional_document_id(doc_type)
        reference = edit_reference(doc_id) if cart.editing_document_id else doc_id
        return _FinalizeAction(document_id=doc_id, reference=reference)

    def _forget(self, key: str, action: _FinalizeAction) -> None:
        if action.document is not None and self._action_by_document.get(action.document.id) == key:
            del self._action_by_document[action.document.id]

    def _remember(self, key: str, action: _FinalizeAction) -> None:
        previous = self._actions.pop(key, None)
        if previous is not None:
            self._forget(key, previous)
        self._actions[key] = action
        while len(self._actions) > ACTION_CACHE_SIZE:
            old_key, old = self._actions.popitem(last=False)
            self._forget(old_key, old)

    def _build_document(
        self,
        cart: Cart,
        doc_id: str,
        doc_type: str,
        received: tuple[Payment, ...],
    ) -> FinalizedDocument:
        totals = compute_totals(cart.lines, cart.discount, cart.freight)

        issued_at = self._now()
        valid_until = None
        if doc_type == "quote":
            valid_until = issued_at + relativedelta(days=self.quote_validity_days)

        provenance = None
        if cart.editing_document_id:
            provenance = f"Edição da pré-venda {cart.editing_document_id}"
        elif cart.source_quote_id and doc_type == "sale":
            provenance = f"Convertido do orçamento {cart.source_quote_id}"

        return FinalizedDocument(
            id=doc_id,
            type=doc_type,
            status="finalized" if doc_type == "sale" else "pending",
            issued_at=issued_at,
            valid_until=valid_until,
            customer=cart.customer,
            seller_id=cart.seller_id,
            seller_name=cart.seller_name,
            lines=tuple(_snapshot_line(l) for l in cart.lines),
            subtotal=totals.subtotal,
            discount=cart.discount,
            discount_applied=totals.discount_applied,
            freight=cart.freight,
            total=totals.total,
            payments=received,
            saldo_pendente=compute_saldo(totals.total, received),
            notes=cart.notes,
            edited_from_id=cart.editing_document_id,
            converted_from_quote_id=cart.source_quote_id if doc_type == "sale" else None,
            provenance=provenance,
        )

    def _available(self, line: CartLineItem) -> Decimal:
        if self.inventory is None:
            return line.available_stock
        try:
            return self.inventory.available(line.item_id, line.variation_id)
        except StoreError as e:
            logger.warning("[finalize] leitura de estoque falhou para %s: %s", line.item_id, e)
            return line.available_stock

    def _sync_stock(self, cart: Cart, action: _FinalizeAction) -> None:
        target = _stock_target(cart)
        pending = {
            k: target.get(k, ZERO) - action.applied.get(k, ZERO)
            for k in set(target) | set(action.applied)
        }
        lines = {line.key: line for line in cart.lines}

        out: list[StockMovement] = []
        back: list[StockMovement] = []
        at_fault = []
        for (item_id, variation_id), qty in sorted(pending.items(), key=lambda kv: (kv[0][0], kv[0][1] or "")):
            line = lines.get((item_id, variation_id))
            label = line.label() if line is not None else ""
            if qty > 0:
                movement = StockMovement(item_id, variation_id, qty, line_label=label)
                if line is not None and qty > self._available(line):
                    at_fault.append(movement.key)
                out.append(movement)
            elif qty < 0:
                back.append(StockMovement(item_id, variation_id, -qty, line_label=label))

        if at_fault:
            raise FinalizeFailure(
                f"Estoque insuficiente para: {', '.join(at_fault)}.",
                lines=at_fault,
            )

        if self.inventory is None:
            action.applied = target
            return

        if out:
            self._move_stock(self.inventory.decrement, out, action)
        if back:
            self._move_stock(self.inventory.restock, back, action, sign=-1)

    def _move_stock(
        self,
        move: Callable[..., None],
        movements: list[StockMovement],
        action: _FinalizeAction,
        *,
        sign: int = 1,
    ) -> None:
        reference = action.stock_reference()
        try:
            move(movements, reference=reference)
        except StockRejected as e:
            logger.error("[finalize] baixa recusada para %s: %s", reference, e.lines)
            raise FinalizeFailure(f"Baixa de estoque recusada: {e}", lines=e.lines)
        except StoreError as e:
            logger.error("[finalize] falha na movimentação de estoque %s: %s", reference, e)
            raise FinalizeFailure(f"Falha na movimentação de estoque: {e}")

        action.commits += 1
        for m in movements:
            k = (m.item_id, m.variation_id)
            action.applied[k] = action.applied.get(k, ZERO) + sign * m.quantity

    def register_payment(
        self,
        document: FinalizedDocument,
        payment: Union[Payment, Mapping[str, Any]],
    ) -> FinalizedDocument:
        if document.type != "sale":
            raise PaymentRejected("Orçamento não recebe pagamento: converta em venda primeiro.")
        if document.is_settled:
            raise PaymentRejected("Documento já quitado.")

        payment = payment if isinstance(payment, Payment) else Payment.model_validate(payment)
        if payment.nominal_value <= 0:
            raise PaymentRejected("Valor do pagamento deve ser maior que zero.")

        self.documents.append_payment(document.id, payment)

        payments = document.payments + (payment,)
        updated = document.model_copy(
            update={"payments": payments, "saldo_pendente": compute_saldo(document.total, payments)}
        )
        action = self._actions.get(self._action_by_document.get(document.id, ""))
        if action is not None and action.document is not None and action.document.id == document.id:
            action.document = updated
        logger.info("[finalize] pagamento em %s: saldo=%s", document.id, updated.saldo_pendente)
        return updated
