from __future__ import annotations

import logging

from pdv_core.infra.db import engine, init_db
from pdv_core.infra.logger import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    setup_logging()
    init_db(engine)
    logger.info("Tabelas criadas! (%s)", engine.url.render_as_string(hide_password=True))


if __name__ == "__main__":
    main()
