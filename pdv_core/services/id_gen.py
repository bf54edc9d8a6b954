from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone


def generate_public_id(prefix: str) -> str:
    # ex.: VEN-2026-4F9A21
    year = datetime.now(timezone.utc).year
    return f"{prefix}-{year}-{secrets.token_hex(3).upper()}"


def provisional_document_id(doc_type: str) -> str:
    # id local até o armazenamento devolver o definitivo
    kind = "v" if doc_type == "sale" else "o"
    return f"doc-{kind}-{int(time.time() * 1000)}-{secrets.token_hex(2)}"


def edit_reference(document_id: str) -> str:
    # cada edição movimenta estoque sob referência própria
    return f"{document_id}:edit:{secrets.token_hex(3)}"
