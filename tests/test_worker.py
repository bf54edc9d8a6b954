from __future__ import annotations

import time

from pdv_core.services.cart_service import CartSession
from pdv_core.services.draft_service import DraftAutosaver
from pdv_core.worker import AutosaveWorker

KEY = "loja-1:caixa-3"


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_run_once_fires_due_save(draft_store, clock):
    saver = DraftAutosaver(draft_store, KEY, debounce_seconds=2, clock=clock)
    worker = AutosaveWorker(saver, interval=0.5)
    saver.notify(CartSession().set_name("Mesa 4"))

    assert worker.run_once() is False
    clock.advance(2)
    assert worker.run_once() is True
    assert worker.cycles == 2
    assert draft_store.save_calls == 1


class _ExplodingSaver:
    session_key = KEY
    closed = False

    def poll(self):
        raise RuntimeError("boom")


def test_cycle_errors_are_logged_and_survived(caplog):
    worker = AutosaveWorker(_ExplodingSaver(), interval=0.5)

    assert worker.run_once() is False
    assert worker.run_once() is False
    assert worker.errors == 2
    assert "[worker] ERROR" in caplog.text


def test_background_thread_saves_after_debounce(draft_store):
    saver = DraftAutosaver(draft_store, KEY, debounce_seconds=0.05)
    worker = AutosaveWorker(saver, interval=0.01)
    session = CartSession()
    saver.attach(session)

    worker.start()
    try:
        assert worker.running
        session.set_customer("Ana")
        assert _wait_for(lambda: draft_store.save_calls >= 1)
    finally:
        worker.stop()

    assert not worker.running
    assert draft_store.get_draft(KEY).cart.customer.name == "Ana"


def test_stop_with_flush_saves_pending_edit(draft_store, clock):
    saver = DraftAutosaver(draft_store, KEY, debounce_seconds=60, clock=clock)
    worker = AutosaveWorker(saver, interval=0.5)
    saver.notify(CartSession().set_notes("fechar caixa"))

    worker.stop(flush=True)
    assert draft_store.save_calls == 1
    assert worker.stop_event.is_set()


def test_loop_exits_when_session_is_cancelled(draft_store):
    saver = DraftAutosaver(draft_store, KEY, debounce_seconds=0.05)
    worker = AutosaveWorker(saver, interval=0.01)
    worker.start()
    saver.cancel()

    assert _wait_for(lambda: not worker.running)
    worker.stop()
