from __future__ import annotations

import json

import pytest
import requests

from pdv_core.errors import DraftPersistenceFailure
from pdv_core.integrations.drafts_api import HttpDraftStore
from pdv_core.schemas.cart import Cart
from pdv_core.schemas.documents import Draft

KEY = "loja 1/caixa-1"


class FakeResponse:
    def __init__(self, status_code: int, body: bytes = b"") -> None:
        self.status_code = status_code
        self.content = body
        self.text = body.decode("utf-8")


@pytest.fixture()
def http(monkeypatch):
    calls = []
    responses = []

    def fake_request(self, method, url, **kwargs):
        calls.append({"method": method, "url": url, **kwargs})
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(requests.Session, "request", fake_request)
    return calls, responses


def _store():
    return HttpDraftStore("https://pdv.example.com/api/", token="tok-123", timeout=5)


def test_save_puts_full_snapshot(http):
    calls, responses = http
    responses.append(FakeResponse(204))

    draft = Draft(session_key=KEY, cart=Cart(name="Pedido balcão"))
    _store().save_draft(KEY, draft)

    call = calls[0]
    assert call["method"] == "PUT"
    assert call["url"] == "https://pdv.example.com/api/pdv/drafts/loja%201%2Fcaixa-1"
    assert call["headers"]["Authorization"] == "Bearer tok-123"
    assert call["timeout"] == 5.0
    assert json.loads(call["data"])["cart"]["name"] == "Pedido balcão"


def test_get_returns_draft_or_none(http):
    calls, responses = http
    draft = Draft(session_key=KEY, cart=Cart(notes="oi"))
    responses.append(FakeResponse(200, draft.model_dump_json().encode("utf-8")))
    responses.append(FakeResponse(404, b"not found"))

    store = _store()
    assert store.get_draft(KEY).cart.notes == "oi"
    assert store.get_draft(KEY) is None
    assert [c["method"] for c in calls] == ["GET", "GET"]


def test_save_none_clears_slot(http):
    calls, responses = http
    responses.append(FakeResponse(404))

    _store().save_draft(KEY, None)
    assert calls[0]["method"] == "DELETE"


@pytest.mark.parametrize(
    "result",
    [
        FakeResponse(500, b"erro interno"),
        requests.ConnectionError("sem rede"),
        requests.Timeout("lento"),
    ],
)
def test_failures_become_draft_persistence_failure(http, result):
    _, responses = http
    responses.append(result)

    with pytest.raises(DraftPersistenceFailure):
        _store().save_draft(KEY, Draft(session_key=KEY, cart=Cart(name="x")))


def test_invalid_payload_is_a_persistence_failure(http):
    _, responses = http
    responses.append(FakeResponse(200, b"{nao json"))

    with pytest.raises(DraftPersistenceFailure):
        _store().get_draft(KEY)


def test_missing_base_url_is_rejected():
    with pytest.raises(DraftPersistenceFailure):
        HttpDraftStore("", timeout=5)
