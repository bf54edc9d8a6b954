"""
Configuração de logging do núcleo do PDV.

Os módulos usam `logging.getLogger(__name__)` (tudo sob `pdv_core.*`);
a aplicação hospedeira chama `setup_logging` uma vez na inicialização.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER = "pdv_core"


def setup_logging(level: Union[int, str, None] = None, *, handler: Optional[logging.Handler] = None) -> logging.Logger:
    """
    Configura o logger raiz do pacote.

    Args:
        level: nível (ex.: "INFO", logging.DEBUG). Se None, usa PDV_LOG_LEVEL.
        handler: handler alternativo (default: stream em stderr)

    Returns:
        Logger `pdv_core` configurado
    """
    if level is None:
        from pdv_core.config import get_settings

        level = get_settings().log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    # evita handlers duplicados quando chamado mais de uma vez
    while logger.handlers:
        logger.removeHandler(logger.handlers[0])

    h = handler or logging.StreamHandler()
    h.setLevel(level)
    h.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(h)
    return logger
