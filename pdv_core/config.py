"""
Configurações do núcleo do PDV (lidas do ambiente / .env).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# carrega .env quando rodar fora de um servidor já configurado
load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Variável {name} inválida: {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Variável {name} inválida: {raw!r}")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite+pysqlite:///./pdv.db"
    draft_debounce_seconds: float = 2.0
    autosave_poll_seconds: float = 0.5
    quote_validity_days: int = 5
    drafts_api_base_url: Optional[str] = None
    drafts_api_token: Optional[str] = None
    drafts_api_timeout_seconds: float = 15.0
    log_level: str = "INFO"


def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "").strip() or Settings.database_url,
        draft_debounce_seconds=_env_float("PDV_DRAFT_DEBOUNCE_SECONDS", 2.0),
        autosave_poll_seconds=_env_float("PDV_AUTOSAVE_POLL_SECONDS", 0.5),
        quote_validity_days=_env_int("PDV_QUOTE_VALIDITY_DAYS", 5),
        drafts_api_base_url=os.getenv("DRAFTS_API_BASE_URL", "").strip().rstrip("/") or None,
        drafts_api_token=os.getenv("DRAFTS_API_TOKEN", "").strip() or None,
        drafts_api_timeout_seconds=_env_float("DRAFTS_API_TIMEOUT_SECONDS", 15.0),
        log_level=os.getenv("PDV_LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
