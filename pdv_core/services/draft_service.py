"""
Rascunho automático do carrinho/orçamento em andamento.

O salvamento é uma máquina de estados explícita:

    idle -> pending(deadline) -> saving -> idle

- cada mutação relevante (re)arma um único prazo de debounce (2s por padrão);
  edições em sequência viram um único save
- no máximo um save em andamento por slot
- falha de save só é tentada de novo no próximo ciclo de debounce
- sempre envia o snapshot completo mais recente (nunca diff), então um save
  lento chegando depois de um rápido não corrompe nada
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from pdv_core.errors import DraftPersistenceFailure, StoreError
from pdv_core.schemas.cart import Cart
from pdv_core.schemas.documents import Draft
from pdv_core.services.cart_service import has_meaningful_content
from pdv_core.services.ports import DraftStore
from pdv_core.services.pricing import apply_totals

if TYPE_CHECKING:
    from pdv_core.services.cart_service import CartSession

logger = logging.getLogger(__name__)

IDLE = "idle"
PENDING = "pending"
SAVING = "saving"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_editing_existing(cart: Cart) -> bool:
    # registro já persistido (pré-venda / orçamento em conversão) não usa rascunho
    return bool(cart.editing_document_id or cart.source_quote_id)


def should_persist(cart: Cart) -> bool:
    return not is_editing_existing(cart) and has_meaningful_content(cart)


def load_draft(store: DraftStore, session_key: str) -> Optional[Draft]:
    """último rascunho válido da sessão; None se não houver, se falhar ou se já foi finalizado."""
    try:
        draft = store.get_draft(session_key)
    except StoreError as e:
        logger.warning("[drafts] falha ao carregar rascunho %s: %s", session_key, e)
        return None
    if draft is None:
        return None
    if draft.status == "finalized":
        logger.info("[drafts] rascunho %s já finalizado: ignorado", session_key)
        return None
    return draft


def merge_draft(draft: Draft, default: Optional[Cart] = None) -> Cart:
    base = (default or Cart()).model_dump()
    # só os campos gravados no rascunho sobrescrevem o estado padrão
    base.update(draft.cart.model_dump(exclude_unset=True))
    return apply_totals(Cart.model_validate(base))


def restore_cart(
    store: DraftStore,
    session_key: str,
    *,
    target_document_id: Optional[str] = None,
    default_factory: Callable[[], Cart] = Cart,
) -> Cart:
    """
    estado inicial da sessão:
      - com registro alvo explícito: estado padrão (quem chamou carrega o registro)
      - com rascunho: rascunho mesclado sobre o padrão e recalculado
      - sem rascunho / erro: estado padrão vazio
    """
    default = default_factory()
    if target_document_id:
        return apply_totals(default)
    draft = load_draft(store, session_key)
    if draft is None:
        return apply_totals(default)
    return merge_draft(draft, default)


def discard_draft(store: DraftStore, session_key: str) -> bool:
    """limpeza best-effort: falha só vai pro log (o slot será sobrescrito depois)."""
    try:
        store.clear_draft(session_key)
        return True
    except StoreError as e:
        logger.warning("[drafts] falha ao limpar rascunho %s: %s", session_key, e)
        return False


class DraftAutosaver:
    def __init__(
        self,
        store: DraftStore,
        session_key: str,
        *,
        debounce_seconds: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if debounce_seconds is None:
            from pdv_core.config import get_settings

            debounce_seconds = get_settings().draft_debounce_seconds

        self.store = store
        self.session_key = session_key
        self.debounce_seconds = float(debounce_seconds)
        self._clock = clock or time.monotonic

        self._lock = threading.Lock()
        self._in_flight = threading.Lock()
        self._deadline: Optional[float] = None
        self._latest: Optional[Cart] = None
        self._created_at: Optional[datetime] = None
        self._closed = False

        self.saves = 0
        self.last_error: Optional[Exception] = None

    @property
    def state(self) -> str:
        if self._in_flight.locked():
            return SAVING
        if self._deadline is not None:
            return PENDING
        return IDLE

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def closed(self) -> bool:
        return self._closed

    def attach(self, session: "CartSession") -> None:
        session.subscribe(self.notify, self._on_reset)

    def _on_reset(self, cart: Cart) -> None:
        self.clear()

    def restore(self, *, target_document_id: Optional[str] = None) -> Cart:
        if target_document_id:
            return apply_totals(Cart())
        draft = load_draft(self.store, self.session_key)
        if draft is None:
            return apply_totals(Cart())
        with self._lock:
            self._created_at = draft.created_at
        return merge_draft(draft)

    def notify(self, cart: Cart) -> None:
        with self._lock:
            if self._closed:
                return
            if not should_persist(cart):
                # nada que valha salvar (ou registro existente em edição)
                self._deadline = None
                self._latest = None
                return
            self._latest = cart.model_copy(deep=True)
            # reset, não acumula
            self._deadline = self._clock() + self.debounce_seconds

    def poll(self, now: Optional[float] = None) -> bool:
        with self._lock:
            if self._closed or self._deadline is None:
                return False
            now = self._clock() if now is None else now
            if now < self._deadline:
                return False
        return self._save()

    def flush(self) -> bool:
        with self._lock:
            if self._closed or self._deadline is None:
                return False
        return self._save()

    def _save(self) -> bool:
        if not self._in_flight.acquire(blocking=False):
            # já existe um save em andamento para este slot
            return False
        try:
            with self._lock:
                cart = self._latest
                self._deadline = None
                if cart is None or self._closed:
                    return False
                created_at = self._created_at or _utcnow()

            draft = Draft(
                session_key=self.session_key,
                cart=cart,
                status="draft",
                created_at=created_at,
                saved_at=_utcnow(),
            )
            try:
                self.store.save_draft(self.session_key, draft)
            except DraftPersistenceFailure as e:
                self.last_error = e
                logger.warning("[drafts] falha ao salvar rascunho %s: %s", self.session_key, e)
                return False

            with self._lock:
                self._created_at = created_at
                self.saves += 1
                self.last_error = None
            logger.debug("[drafts] rascunho %s salvo (itens=%d)", self.session_key, len(cart.lines))
            return True
        finally:
            self._in_flight.release()

    def cancel(self) -> None:
        """encerramento da sessão: nenhum save dispara depois disso."""
        with self._lock:
            self._closed = True
            self._deadline = None
            self._latest = None

    def clear(self) -> bool:
        with self._lock:
            self._deadline = None
            self._latest = None
            self._created_at = None
        return discard_draft(self.store, self.session_key)
