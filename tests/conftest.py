from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from pdv_core.infra.db import make_session_factory
from pdv_core.infra.memory import InMemoryDocumentStore, InMemoryDraftStore, InMemoryInventory
from pdv_core.infra.models import Base


class FakeClock:
    """relógio monotônico controlado pelo teste (segundos)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture()
def engine():
    """
    Banco de teste em SQLite em memória.
    - Rápido
    - Isolado (um banco novo por teste)
    - Sem depender do Postgres instalado
    """
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def draft_store():
    return InMemoryDraftStore()


@pytest.fixture()
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture()
def inventory():
    return InMemoryInventory({"10": 5, "20:v-azul": 4, "20:v-preta": 4})


@pytest.fixture()
def caneca():
    # formato da API nova (nomes em português)
    return {
        "id_produto": 10,
        "nome": "Caneca personalizada",
        "codigo_produto": "CAN-001",
        "unidade_medida": "un",
        "preco_venda": "50,00",
        "preco_custo": "20,00",
        "estoque": 5,
    }


@pytest.fixture()
def camiseta():
    return {
        "id": 20,
        "nome": "Camiseta",
        "preco_venda": "39.90",
        "preco_custo": "18.00",
        "estoque": 8,
        "variacoes": [
            {"id_variacao": "v-azul", "cor": "Azul", "tamanho": "M", "estoque_var": 4, "preco_var": "42,00"},
            {"id_variacao": "v-preta", "cor": "Preta", "tamanho": "G", "estoque_var": 4},
        ],
    }


@pytest.fixture()
def kit():
    return {
        "id": 30,
        "nome": "Kit presente",
        "isComposto": True,
        "composicao": [
            {"produto_id": "A", "nome": "Caneca", "quantidade": 2, "preco_unitario": 10, "custo_unitario": 4},
            {"produto_id": "B", "nome": "Chaveiro", "quantidade": 1, "preco_unitario": 5, "custo_unitario": 2},
        ],
    }
