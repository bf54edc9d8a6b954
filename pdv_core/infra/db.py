from __future__ import annotations

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from pdv_core.config import get_settings


def make_engine(url: Optional[str] = None) -> Engine:
    url = url or get_settings().database_url
    connect_args = {}
    if url.startswith("sqlite"):
        # sessão usada pela thread do autosave e pela do caixa
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True, future=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


engine = make_engine()


def init_db(bind: Optional[Engine] = None) -> None:
    from pdv_core.infra.models import Base

    Base.metadata.create_all(bind=bind or engine)
