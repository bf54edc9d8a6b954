"""
Colaboradores persistidos via SQLAlchemy (rascunhos, documentos, estoque).

Cada operação abre a própria sessão e faz commit/rollback; erros do banco
sobem como StoreError (ou DraftPersistenceFailure no caso dos rascunhos).
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pdv_core.errors import DraftPersistenceFailure, StockRejected, StoreError
from pdv_core.infra.models import (
    DocumentORM,
    DocumentStatus,
    DocumentType,
    DraftORM,
    DraftStatus,
    PaymentORM,
    StockMovementORM,
    StockORM,
)
from pdv_core.money import ZERO, quantize_money, to_decimal
from pdv_core.schemas.documents import DocumentReceipt, Draft, FinalizedDocument, Payment
from pdv_core.services.id_gen import generate_public_id
from pdv_core.services.ports import StockMovement

logger = logging.getLogger(__name__)

DOC_TYPE = {"sale": DocumentType.SALE, "quote": DocumentType.QUOTE}
DOC_STATUS = {"finalized": DocumentStatus.FINALIZED, "pending": DocumentStatus.PENDING}
PUBLIC_PREFIX = {DocumentType.SALE: "VEN", DocumentType.QUOTE: "ORC"}

# campos guardados em colunas próprias, fora do snapshot
_SNAPSHOT_EXCLUDE = {"payments", "saldo_pendente", "display_code"}


def _unique_public_id(db: Session, prefix: str) -> str:
    for _ in range(30):
        pid = generate_public_id(prefix)
        exists = db.scalar(select(DocumentORM.id).where(DocumentORM.public_id == pid))
        if not exists:
            return pid
    raise StoreError(f"Falha ao gerar public_id único para prefix={prefix}.")


def _payment_row(payment: Payment) -> PaymentORM:
    return PaymentORM(
        method=payment.method,
        nominal_value=payment.nominal_value,
        fee_percent=payment.fee_percent,
        effective_value=payment.effective_value,
        paid_at=payment.paid_at,
    )


def _saldo(total: Decimal, rows: Sequence[PaymentORM]) -> Decimal:
    paid = sum((to_decimal(p.effective_value) for p in rows), ZERO)
    return quantize_money(max(ZERO, to_decimal(total) - paid))


class SqlDraftStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get_draft(self, session_key: str) -> Optional[Draft]:
        try:
            with self._session_factory() as db:
                row = db.scalar(select(DraftORM).where(DraftORM.session_key == session_key))
                if row is None:
                    return None
                draft = Draft.model_validate_json(row.payload_json)
                if row.status == DraftStatus.FINALIZED:
                    draft = draft.model_copy(update={"status": "finalized"})
                return draft
        except SQLAlchemyError as e:
            raise DraftPersistenceFailure(f"Falha ao ler rascunho: {e}")

    def save_draft(self, session_key: str, draft: Optional[Draft]) -> None:
        if draft is None:
            self.clear_draft(session_key)
            return

        payload = draft.model_dump_json()
        status = DraftStatus.FINALIZED if draft.status == "finalized" else DraftStatus.DRAFT
        with self._session_factory() as db:
            try:
                row = db.scalar(select(DraftORM).where(DraftORM.session_key == session_key))
                if row is None:
                    db.add(DraftORM(session_key=session_key, status=status, payload_json=payload))
                else:
                    row.payload_json = payload
                    row.status = status
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise DraftPersistenceFailure(f"Falha ao salvar rascunho: {e}")

    def clear_draft(self, session_key: str) -> None:
        with self._session_factory() as db:
            try:
                db.execute(delete(DraftORM).where(DraftORM.session_key == session_key))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise DraftPersistenceFailure(f"Falha ao limpar rascunho: {e}")


class SqlDocumentStore:
    """
    rules:
      - documento novo ganha public_id único (VEN-/ORC-)
      - documento já existente (edição de pré-venda, retentativa) mantém o public_id
      - saldo_pendente é recalculado a cada pagamento
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def finalize(self, document: FinalizedDocument) -> DocumentReceipt:
        doc_type = DOC_TYPE[document.type]
        snapshot = document.model_dump_json(exclude=_SNAPSHOT_EXCLUDE)

        with self._session_factory() as db:
            try:
                row = db.get(DocumentORM, document.id)
                if row is None:
                    row = DocumentORM(
                        id=document.id,
                        public_id=_unique_public_id(db, PUBLIC_PREFIX[doc_type]),
                    )
                    db.add(row)
                else:
                    # reedição substitui os pagamentos pelos do documento novo
                    row.payments.clear()

                row.type = doc_type
                row.status = DOC_STATUS[document.status]
                row.total = document.total
                row.snapshot_json = snapshot
                row.issued_at = document.issued_at
                row.valid_until = document.valid_until
                row.edited_from_id = document.edited_from_id
                row.converted_from_quote_id = document.converted_from_quote_id
                row.payments.extend(_payment_row(p) for p in document.payments)
                row.saldo_pendente = document.saldo_pendente

                db.commit()
                return DocumentReceipt(id=row.id, display_code=row.public_id)
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreError(f"Falha ao gravar documento {document.id}: {e}")

    def append_payment(self, document_id: str, payment: Payment) -> None:
        with self._session_factory() as db:
            try:
                row = db.get(DocumentORM, document_id)
                if row is None:
                    raise StoreError(f"Documento não encontrado: {document_id}")
                row.payments.append(_payment_row(payment))
                row.saldo_pendente = _saldo(row.total, row.payments)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreError(f"Falha ao registrar pagamento em {document_id}: {e}")

    def get_document(self, document_id: str) -> Optional[FinalizedDocument]:
        try:
            with self._session_factory() as db:
                row = db.get(DocumentORM, document_id)
                if row is None:
                    return None
                data: dict[str, Any] = FinalizedDocument.model_validate_json(
                    row.snapshot_json
                ).model_dump()
                data["display_code"] = row.public_id
                data["saldo_pendente"] = row.saldo_pendente
                data["payments"] = [
                    Payment(
                        method=p.method,
                        nominal_value=p.nominal_value,
                        fee_percent=p.fee_percent,
                        effective_value=p.effective_value,
                        paid_at=p.paid_at,
                    )
                    for p in row.payments
                ]
                return FinalizedDocument.model_validate(data)
        except SQLAlchemyError as e:
            raise StoreError(f"Falha ao ler documento {document_id}: {e}")


class SqlInventory:
    """
    rules:
      - baixa tudo-ou-nada dentro de uma transação
      - referência já aplicada (movimentos existentes) não é aplicada de novo
      - devolução grava movimento com quantidade negativa
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def set_quantity(self, item_id: str, quantity: Any, variation_id: Optional[str] = None) -> None:
        with self._session_factory() as db:
            try:
                row = self._row(db, item_id, variation_id)
                if row is None:
                    row = StockORM(item_id=item_id, variation_id=variation_id or "")
                    db.add(row)
                row.quantity = to_decimal(quantity)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreError(f"Falha ao ajustar estoque de {item_id}: {e}")

    @staticmethod
    def _row(db: Session, item_id: str, variation_id: Optional[str], *, lock: bool = False):
        stmt = select(StockORM).where(
            StockORM.item_id == item_id,
            StockORM.variation_id == (variation_id or ""),
        )
        if lock:
            stmt = stmt.with_for_update()
        return db.scalar(stmt)

    def available(self, item_id: str, variation_id: Optional[str] = None) -> Decimal:
        try:
            with self._session_factory() as db:
                row = self._row(db, item_id, variation_id)
                return to_decimal(row.quantity) if row is not None else ZERO
        except SQLAlchemyError as e:
            raise StoreError(f"Falha ao ler estoque de {item_id}: {e}")

    def decrement(self, movements: Sequence[StockMovement], *, reference: str) -> None:
        needed: dict[tuple[str, str], Decimal] = {}
        for m in movements:
            k = (m.item_id, m.variation_id or "")
            needed[k] = needed.get(k, ZERO) + m.quantity

        with self._session_factory() as db:
            try:
                applied = db.scalar(
                    select(StockMovementORM.id).where(StockMovementORM.reference == reference).limit(1)
                )
                if applied:
                    logger.info("[stock] baixa %s já aplicada: ignorada", reference)
                    return

                rows = {}
                refused = []
                for (item_id, var_id), qty in needed.items():
                    row = self._row(db, item_id, var_id, lock=True)
                    if row is None or to_decimal(row.quantity) < qty:
                        refused.append(f"{item_id}:{var_id}" if var_id else item_id)
                    rows[(item_id, var_id)] = row

                if refused:
                    db.rollback()
                    raise StockRejected(f"Estoque insuficiente: {', '.join(refused)}", lines=refused)

                for (item_id, var_id), qty in needed.items():
                    row = rows[(item_id, var_id)]
                    row.quantity = to_decimal(row.quantity) - qty
                    db.add(StockMovementORM(
                        reference=reference,
                        item_id=item_id,
                        variation_id=var_id,
                        quantity=qty,
                    ))
                db.commit()
            except IntegrityError:
                # outra transação aplicou a mesma referência primeiro
                db.rollback()
                logger.info("[stock] baixa %s aplicada em paralelo: ignorada", reference)
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreError(f"Falha na baixa de estoque {reference}: {e}")

    def restock(self, movements: Sequence[StockMovement], *, reference: str) -> None:
        returned: dict[tuple[str, str], Decimal] = {}
        for m in movements:
            k = (m.item_id, m.variation_id or "")
            returned[k] = returned.get(k, ZERO) + m.quantity

        with self._session_factory() as db:
            try:
                applied = db.scalar(
                    select(StockMovementORM.id).where(StockMovementORM.reference == reference).limit(1)
                )
                if applied:
                    logger.info("[stock] devolução %s já aplicada: ignorada", reference)
                    return

                for (item_id, var_id), qty in returned.items():
                    row = self._row(db, item_id, var_id, lock=True)
                    if row is None:
                        row = StockORM(item_id=item_id, variation_id=var_id, quantity=ZERO)
                        db.add(row)
                    row.quantity = to_decimal(row.quantity) + qty
                    # devolução fica registrada com quantidade negativa
                    db.add(StockMovementORM(
                        reference=reference,
                        item_id=item_id,
                        variation_id=var_id,
                        quantity=-qty,
                    ))
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info("[stock] devolução %s aplicada em paralelo: ignorada", reference)
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreError(f"Falha na devolução de estoque {reference}: {e}")
