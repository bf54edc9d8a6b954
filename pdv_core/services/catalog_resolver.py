"""
Normalização de registros de catálogo e montagem do item de carrinho.

As respostas da API usam nomes de campo diferentes conforme a versão do
backend. A leitura tolerante acontece só aqui, uma vez, na fronteira; o resto
do núcleo enxerga um único nome por conceito.

Precedência (primeiro valor presente vence):

    id            id | id_produto | produto_id
    name          nome | name | descricao
    code          codigo_produto | codigo | code | sku
    unit          unidade_medida | unidadeMedida | unit
    sell_price    preco_venda | sell_price | price
    cost_price    preco_custo | cost_price | cost
    stock         estoque | stock | quantidade_estoque
    image         imagem_principal | image
    is_composite  isComposto | is_composto | is_composite | (composição não vazia)
    promotion     promotion{...} | promocao_ativa + promo_data_inicio +
                  promo_data_fim + preco_promocional
    variations    variacoes | variations
        id        id | id_variacao
        stock     estoque_var | estoque | stock
        price     preco_var | preco | price
        image     imagem_url | imagem | image
    composite     composicao | composite
        item_id   produto_id | id_produto | item_id | id
        quantity  quantidade | quantity
        unit_price preco_unitario | unit_price
        unit_cost  custo_unitario | unit_cost
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from dateutil import parser as date_parser

from pdv_core.errors import InvalidCatalogReference
from pdv_core.money import to_decimal
from pdv_core.schemas.cart import CartLineItem, PromotionSnapshot
from pdv_core.schemas.catalog import CatalogItem, CompositeComponent, Promotion, VariationOption
from pdv_core.services.pricing import is_promotion_active, parse_quantity, rollup_composite

_MISSING = (None, "")


# helpers
def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        v = raw.get(k)
        if v not in _MISSING:
            return v
    return None


def _truthy(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "sim", "ativo", "yes", "on")
    return bool(v)


def _parse_day(v: Any) -> Optional[date]:
    if v in _MISSING:
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    text = str(v).strip()
    try:
        # "2026-01-30", "2026-01-30T03:00:00Z" ou "30/01/2026"
        dayfirst = "/" in text
        return date_parser.parse(text, dayfirst=dayfirst).date()
    except (ValueError, OverflowError):
        return None


def unwrap_collection(payload: Any) -> list:
    """lista de registros de data.data.data | data.data | data | payload."""
    current = payload
    for _ in range(3):
        if isinstance(current, list):
            return current
        if isinstance(current, Mapping) and "data" in current:
            current = current["data"]
        else:
            break
    return current if isinstance(current, list) else []


def _normalize_promotion(raw: Mapping[str, Any]) -> Optional[Promotion]:
    nested = raw.get("promotion")
    if isinstance(nested, Mapping):
        return Promotion(
            active=_truthy(nested.get("active")),
            start=_parse_day(nested.get("start")),
            end=_parse_day(nested.get("end")),
            promo_price=to_decimal(_first(nested, "promo_price", "price")),
        )
    if "promocao_ativa" not in raw and "preco_promocional" not in raw:
        return None
    return Promotion(
        active=_truthy(raw.get("promocao_ativa")),
        start=_parse_day(raw.get("promo_data_inicio")),
        end=_parse_day(raw.get("promo_data_fim")),
        promo_price=to_decimal(raw.get("preco_promocional")),
    )


def _normalize_variation(raw: Mapping[str, Any]) -> VariationOption:
    var_id = _first(raw, "id", "id_variacao")
    if var_id is None:
        raise InvalidCatalogReference("Variação sem identificação.")
    labels = {}
    for key in ("cor", "tamanho"):
        if raw.get(key) not in _MISSING:
            labels[key] = str(raw[key])
    if isinstance(raw.get("labels"), Mapping):
        labels.update({str(k): str(v) for k, v in raw["labels"].items()})

    price = to_decimal(_first(raw, "preco_var", "preco", "price"))
    return VariationOption(
        id=str(var_id),
        name=_first(raw, "nome", "name"),
        labels=labels,
        stock=to_decimal(_first(raw, "estoque_var", "estoque", "stock")),
        price=price if price > 0 else None,
        image=_first(raw, "imagem_url", "imagem", "image"),
    )


def _normalize_component(raw: Mapping[str, Any]) -> CompositeComponent:
    item_id = _first(raw, "produto_id", "id_produto", "item_id", "id")
    if item_id is None:
        raise InvalidCatalogReference("Componente de kit sem produto.")
    return CompositeComponent(
        item_id=str(item_id),
        name=str(_first(raw, "nome", "name") or ""),
        quantity=to_decimal(_first(raw, "quantidade", "quantity"), Decimal("1")),
        unit_price=to_decimal(_first(raw, "preco_unitario", "unit_price")),
        unit_cost=to_decimal(_first(raw, "custo_unitario", "unit_cost")),
    )


def normalize_catalog_record(raw: Union[Mapping[str, Any], CatalogItem]) -> CatalogItem:
    if isinstance(raw, CatalogItem):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidCatalogReference("Registro de catálogo inválido.")

    item_id = _first(raw, "id", "id_produto", "produto_id")
    if item_id is None:
        raise InvalidCatalogReference("Produto inválido: registro sem identificação.")

    variations = [_normalize_variation(v) for v in (_first(raw, "variacoes", "variations") or [])]
    composite = [_normalize_component(c) for c in (_first(raw, "composicao", "composite") or [])]
    flag = _first(raw, "isComposto", "is_composto", "is_composite")
    is_composite = _truthy(flag) if flag is not None else bool(composite)

    return CatalogItem(
        id=str(item_id),
        name=str(_first(raw, "nome", "name", "descricao") or f"Produto {item_id}"),
        code=_first(raw, "codigo_produto", "codigo", "code", "sku"),
        unit=str(_first(raw, "unidade_medida", "unidadeMedida", "unit") or "un"),
        sell_price=to_decimal(_first(raw, "preco_venda", "sell_price", "price")),
        cost_price=to_decimal(_first(raw, "preco_custo", "cost_price", "cost")),
        stock=to_decimal(_first(raw, "estoque", "stock", "quantidade_estoque")),
        image=_first(raw, "imagem_principal", "image"),
        is_composite=is_composite,
        promotion=_normalize_promotion(raw),
        variations=variations,
        composite=composite,
    )


def resolve_variation(item: CatalogItem, variation: Union[VariationOption, str, None]) -> Optional[VariationOption]:
    if variation is None:
        return None
    var_id = variation.id if isinstance(variation, VariationOption) else str(variation)
    found = item.find_variation(var_id)
    if found is None:
        if isinstance(variation, VariationOption):
            # variação avulsa (não listada no catálogo carregado)
            return variation
        raise InvalidCatalogReference(f"Variação {var_id} não pertence ao produto {item.id}.")
    return found


def resolve_line_template(
    item: Union[CatalogItem, Mapping[str, Any]],
    variation: Union[VariationOption, str, None] = None,
    *,
    quantity: Any = 1,
    today: Optional[date] = None,
) -> CartLineItem:
    """
    monta o item de carrinho (sem efeito colateral).
    ordem de preço: promoção ativa > preço da variação > preço base.
    kit com componentes: preço/custo = soma dos componentes.
    """
    item = normalize_catalog_record(item)
    var = resolve_variation(item, variation)

    unit_price = item.sell_price
    unit_cost = item.cost_price
    promo_snapshot: Optional[PromotionSnapshot] = None

    if item.is_composite and item.composite:
        unit_price, unit_cost = rollup_composite(item.composite)
    elif is_promotion_active(item.promotion, today) and item.promotion.promo_price > 0:
        unit_price = item.promotion.promo_price
        promo_snapshot = PromotionSnapshot(
            original_price=item.sell_price,
            promo_price=item.promotion.promo_price,
        )
    elif var is not None and var.price is not None and var.price > 0:
        unit_price = var.price

    available = var.stock if var is not None else item.stock

    return CartLineItem(
        item_id=item.id,
        variation_id=var.id if var is not None else None,
        variation_label=var.display_name() if var is not None else None,
        name=item.name,
        code=item.code,
        unit=item.unit,
        image=(var.image if var is not None and var.image else item.image),
        quantity=parse_quantity(quantity),
        unit_price=unit_price,
        unit_cost=unit_cost,
        controls_stock=item.controls_stock,
        available_stock=available,
        promotion=promo_snapshot,
        is_composite=item.is_composite,
        components=list(item.composite),
    )
