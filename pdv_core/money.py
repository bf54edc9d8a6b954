from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

ZERO = Decimal("0")
CENT = Decimal("0.01")


def quantize_money(v: Decimal) -> Decimal:
    return v.quantize(CENT, rounding=ROUND_HALF_UP)


def _normalize_separators(text: str) -> str:
    # "1.234,56" -> "1234.56" | "2,5" -> "2.5" | "1,234.5" -> "1234.5"
    text = text.strip().replace(" ", "")
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    else:
        text = text.replace(",", ".")
    return text


def parse_decimal(value: Any) -> Decimal:
    """
    converte entrada de usuário/API em Decimal.
    aceita "," e "." como separador decimal. levanta ValueError se não for número finito.
    """
    if isinstance(value, bool):
        raise ValueError(f"valor não numérico: {value!r}")
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, int):
        d = Decimal(value)
    elif isinstance(value, float):
        d = Decimal(str(value))
    elif isinstance(value, str):
        text = _normalize_separators(value.replace("R$", ""))
        if not text:
            raise ValueError("valor vazio")
        try:
            d = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"valor não numérico: {value!r}")
    else:
        raise ValueError(f"valor não numérico: {value!r}")

    if not d.is_finite():
        raise ValueError(f"valor não finito: {value!r}")
    return d


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    if value is None:
        return default
    try:
        return parse_decimal(value)
    except ValueError:
        return default


def non_negative(value: Any) -> Decimal:
    d = to_decimal(value)
    return d if d > 0 else ZERO
