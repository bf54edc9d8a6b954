from __future__ import annotations

import threading
from decimal import Decimal

from pdv_core.errors import DraftPersistenceFailure
from pdv_core.infra.memory import InMemoryDraftStore
from pdv_core.schemas.cart import Cart, CustomerRef
from pdv_core.schemas.documents import Draft
from pdv_core.services.cart_service import CartSession
from pdv_core.services.draft_service import (
    IDLE,
    PENDING,
    SAVING,
    DraftAutosaver,
    discard_draft,
    restore_cart,
    should_persist,
)

KEY = "loja-1:caixa-2"


def _saver(store, clock, **kwargs):
    return DraftAutosaver(store, KEY, debounce_seconds=2, clock=clock, **kwargs)


class FlakyDraftStore(InMemoryDraftStore):
    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    def save_draft(self, session_key, draft):
        if self.failures > 0:
            self.failures -= 1
            raise DraftPersistenceFailure("servidor fora do ar")
        super().save_draft(session_key, draft)


class BrokenDraftStore(InMemoryDraftStore):
    def get_draft(self, session_key):
        raise DraftPersistenceFailure("timeout")

    def clear_draft(self, session_key):
        raise DraftPersistenceFailure("timeout")


class BlockingDraftStore(InMemoryDraftStore):
    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def save_draft(self, session_key, draft):
        self.entered.set()
        self.release.wait(5)
        super().save_draft(session_key, draft)


def test_edits_in_a_burst_become_one_save(draft_store, clock):
    saver = _saver(draft_store, clock)
    session = CartSession()
    saver.attach(session)

    session.set_customer("Maria")
    assert saver.state == PENDING
    clock.advance(1)
    session.set_notes("embrulhar")
    clock.advance(1.5)
    # o prazo foi rearmado na segunda edição
    assert saver.poll() is False

    clock.advance(0.5)
    assert saver.poll() is True
    assert saver.state == IDLE
    assert draft_store.save_calls == 1
    assert draft_store.get_draft(KEY).cart.notes == "embrulhar"

    assert saver.poll() is False
    assert draft_store.save_calls == 1


def test_empty_cart_is_never_saved(draft_store, clock):
    saver = _saver(draft_store, clock)
    session = CartSession()
    saver.attach(session)

    session.set_notes("   ")
    session.set_freight("0")
    clock.advance(10)

    assert saver.state == IDLE
    assert saver.poll() is False
    assert saver.flush() is False
    assert draft_store.save_calls == 0


def test_pending_save_is_cancelled_when_cart_becomes_empty(draft_store, clock):
    saver = _saver(draft_store, clock)
    session = CartSession()
    saver.attach(session)

    session.set_name("Pedido balcão")
    session.set_name("")
    clock.advance(5)

    assert saver.poll() is False
    assert draft_store.save_calls == 0


def test_editing_existing_record_skips_drafts(draft_store, clock):
    saver = _saver(draft_store, clock)
    session = CartSession(Cart(editing_document_id="doc-v-1", name="Pré-venda"))
    saver.attach(session)

    session.set_notes("alterado")
    clock.advance(5)

    assert saver.poll() is False
    assert draft_store.save_calls == 0
    assert not should_persist(Cart(source_quote_id="orc-1", notes="x"))


def test_failed_save_waits_for_next_debounce_cycle(clock, caplog):
    store = FlakyDraftStore(failures=1)
    saver = _saver(store, clock)
    session = CartSession()
    saver.attach(session)

    session.set_customer("Maria")
    clock.advance(2)
    assert saver.poll() is False
    assert isinstance(saver.last_error, DraftPersistenceFailure)
    assert "falha ao salvar rascunho" in caplog.text

    # sem retry automático
    assert saver.state == IDLE
    clock.advance(10)
    assert saver.poll() is False

    session.set_notes("de novo")
    clock.advance(2)
    assert saver.poll() is True
    assert saver.last_error is None
    assert store.get_draft(KEY).cart.customer.name == "Maria"


def test_at_most_one_save_in_flight(clock):
    store = BlockingDraftStore()
    saver = _saver(store, clock)
    session = CartSession()
    saver.attach(session)
    session.set_customer("Maria")

    worker = threading.Thread(target=saver.flush)
    worker.start()
    assert store.entered.wait(2)
    assert saver.state == SAVING

    session.set_notes("mais uma edição")
    assert saver.flush() is False

    store.release.set()
    worker.join(2)
    assert store.save_calls == 1

    # a edição feita durante o save continua pendente
    assert saver.state == PENDING
    assert saver.flush() is True
    assert store.get_draft(KEY).cart.notes == "mais uma edição"


def test_cancel_stops_future_saves(draft_store, clock):
    saver = _saver(draft_store, clock)
    session = CartSession()
    saver.attach(session)

    session.set_customer("Maria")
    saver.cancel()
    clock.advance(5)
    assert saver.poll() is False

    session.set_notes("depois do fechamento")
    assert saver.state == IDLE
    assert saver.flush() is False
    assert draft_store.save_calls == 0


def test_restore_reproduces_last_saved_totals(draft_store, clock, caneca):
    saver = _saver(draft_store, clock)
    session = CartSession()
    saver.attach(session)
    session.add_line(caneca, 2)
    session.set_discount(type="fixed", value="15")
    session.set_freight({"value": "9,90"})
    saved = session.cart
    assert saver.flush() is True

    restored = restore_cart(draft_store, KEY)
    assert restored.id == saved.id
    assert restored.total == saved.total == Decimal("94.90")
    assert restored.lines[0].line_id == saved.lines[0].line_id

    other = _saver(draft_store, clock)
    assert other.restore().total == Decimal("94.90")


def test_restore_with_explicit_target_ignores_draft(draft_store):
    draft_store.save_draft(KEY, Draft(session_key=KEY, cart=Cart(name="rascunho antigo")))

    cart = restore_cart(draft_store, KEY, target_document_id="doc-v-9")
    assert cart.name == ""
    assert cart.lines == []


def test_finalized_draft_is_not_restored(draft_store):
    draft_store.save_draft(KEY, Draft(session_key=KEY, cart=Cart(name="já vendido"), status="finalized"))
    assert restore_cart(draft_store, KEY).name == ""


def test_restore_failure_falls_back_to_default():
    store = BrokenDraftStore()
    cart = restore_cart(store, KEY, default_factory=lambda: Cart(kind="quote"))
    assert cart.kind == "quote"
    assert cart.lines == []


def test_partial_draft_merges_over_defaults(draft_store):
    draft_store._slots[KEY] = (
        '{"session_key": "%s", "cart": {"name": "Festa", "customer": {"name": "Ana"}}}' % KEY
    )
    cart = restore_cart(draft_store, KEY, default_factory=lambda: Cart(kind="quote", seller_id="3"))

    assert cart.name == "Festa"
    assert cart.customer == CustomerRef(name="Ana")
    # campos ausentes no rascunho ficam com o padrão
    assert cart.kind == "quote"
    assert cart.seller_id == "3"


def test_session_reset_discards_remote_draft(draft_store, clock):
    saver = _saver(draft_store, clock)
    session = CartSession()
    saver.attach(session)
    session.set_customer("Maria")
    saver.flush()
    assert KEY in draft_store

    session.clear()
    assert KEY not in draft_store
    assert saver.state == IDLE


def test_discard_is_best_effort(caplog):
    assert discard_draft(BrokenDraftStore(), KEY) is False
    assert "falha ao limpar rascunho" in caplog.text
    assert discard_draft(InMemoryDraftStore(), KEY) is True
