# pdv_core/integrations/drafts_api.py
from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

import requests

from pdv_core.errors import DraftPersistenceFailure
from pdv_core.schemas.documents import Draft

logger = logging.getLogger(__name__)


class HttpDraftStore:
    """
    Slot de rascunho por sessão no servidor do PDV.

      GET    /pdv/drafts/<session_key>   -> 200 {draft} | 404
      PUT    /pdv/drafts/<session_key>   body: {draft}
      DELETE /pdv/drafts/<session_key>

    Qualquer falha de rede ou status >= 300 vira DraftPersistenceFailure.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if base_url is None or timeout is None:
            from pdv_core.config import get_settings

            settings = get_settings()
            base_url = base_url or settings.drafts_api_base_url
            token = token if token is not None else settings.drafts_api_token
            timeout = timeout if timeout is not None else settings.drafts_api_timeout_seconds
        if not base_url:
            raise DraftPersistenceFailure("DRAFTS_API_BASE_URL não configurado.")

        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = float(timeout)
        self._http = session or requests.Session()

    def _url(self, session_key: str) -> str:
        return f"{self.base_url}/pdv/drafts/{quote(session_key, safe='')}"

    def _headers(self) -> dict:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "pdv_core/1.0",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, session_key: str, **kwargs) -> requests.Response:
        try:
            return self._http.request(
                method,
                self._url(session_key),
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise DraftPersistenceFailure(f"Falha de rede ({method} rascunho): {e}")

    def get_draft(self, session_key: str) -> Optional[Draft]:
        resp = self._request("GET", session_key)
        if resp.status_code == 404:
            return None
        if resp.status_code >= 300:
            raise DraftPersistenceFailure(
                f"Falha ao carregar rascunho ({resp.status_code}): {resp.text[:300]}"
            )
        if not resp.content:
            return None
        try:
            return Draft.model_validate_json(resp.content)
        except ValueError as e:
            raise DraftPersistenceFailure(f"Rascunho inválido recebido do servidor: {e}")

    def save_draft(self, session_key: str, draft: Optional[Draft]) -> None:
        if draft is None:
            self.clear_draft(session_key)
            return
        payload = draft.model_dump_json()
        logger.debug("[drafts] PUT %s (%d bytes)", session_key, len(payload))
        resp = self._request("PUT", session_key, data=payload)
        if resp.status_code >= 300:
            raise DraftPersistenceFailure(
                f"Falha ao salvar rascunho ({resp.status_code}): {resp.text[:300]}"
            )

    def clear_draft(self, session_key: str) -> None:
        resp = self._request("DELETE", session_key)
        # slot já vazio também conta como limpo
        if resp.status_code >= 300 and resp.status_code != 404:
            raise DraftPersistenceFailure(
                f"Falha ao limpar rascunho ({resp.status_code}): {resp.text[:300]}"
            )
