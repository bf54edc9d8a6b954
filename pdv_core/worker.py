# pdv_core/worker.py
from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from pdv_core.services.draft_service import DraftAutosaver

logger = logging.getLogger(__name__)


class AutosaveWorker:
    """
    Agendador do autosave: consulta o prazo de debounce a cada `interval`
    segundos e dispara o save quando vence.

    Encerramento pelo `stop_event` (token de cancelamento); o worker nunca
    morre por erro de um ciclo.
    """

    def __init__(
        self,
        autosaver: DraftAutosaver,
        *,
        interval: Optional[float] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        if interval is None:
            from pdv_core.config import get_settings

            interval = get_settings().autosave_poll_seconds
        self.autosaver = autosaver
        self.interval = max(0.01, float(interval))
        self.stop_event = stop_event or threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.cycles = 0
        self.errors = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        try:
            return self.autosaver.poll()
        except Exception:
            self.errors += 1
            logger.exception("[worker] ERROR no ciclo de autosave (%s)", self.autosaver.session_key)
            return False
        finally:
            self.cycles += 1

    def run_loop(self) -> None:
        logger.info(
            "[worker] started. session=%s interval=%ss",
            self.autosaver.session_key, self.interval,
        )
        while not self.stop_event.is_set():
            started = time.monotonic()
            if self.autosaver.closed:
                logger.info("[worker] sessão encerrada: parando")
                break
            self.run_once()
            elapsed = time.monotonic() - started
            self.stop_event.wait(max(0.0, self.interval - elapsed))
        logger.info("[worker] stopped. session=%s", self.autosaver.session_key)

    def start(self) -> threading.Thread:
        if self.running:
            return self._thread
        self.stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_loop,
            name=f"autosave-{self.autosaver.session_key}",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def stop(self, *, flush: bool = False, timeout: Optional[float] = 5.0) -> None:
        if flush:
            # save pendente sai antes de parar (ex.: fechar o caixa)
            self.autosaver.flush()
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
