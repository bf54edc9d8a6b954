from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from pdv_core.errors import InsufficientStock, StoreError
from pdv_core.schemas.cart import CartLineItem
from pdv_core.services.ports import Inventory

logger = logging.getLogger(__name__)


def check_quantity(
    *,
    controls_stock: bool,
    current_quantity: Decimal,
    delta: Decimal,
    available: Decimal,
    item_id: Optional[str] = None,
    variation_id: Optional[str] = None,
    name: Optional[str] = None,
) -> None:
    """
    libera ou recusa um aumento de quantidade.
      - sem controle de estoque: sempre libera
      - redução: sempre libera
      - senão: current + delta <= available
    """
    if not controls_stock or delta <= 0:
        return
    requested = current_quantity + delta
    if requested > available:
        raise InsufficientStock(
            available,
            requested,
            item_id=item_id,
            variation_id=variation_id,
            name=name,
        )


class StockValidator:
    """
    validação consultiva contra um snapshot pontual. a baixa autoritativa
    acontece no colaborador de estoque na finalização.
    """

    def __init__(self, inventory: Optional[Inventory] = None) -> None:
        self.inventory = inventory

    def snapshot(self, line: CartLineItem) -> Decimal:
        if self.inventory is None:
            return line.available_stock
        try:
            return self.inventory.available(line.item_id, line.variation_id)
        except StoreError as e:
            # sem leitura fresca: fica o estoque que veio com o catálogo
            logger.warning("[stock] leitura de estoque falhou para %s: %s", line.item_id, e)
            return line.available_stock

    def validate(
        self,
        line: CartLineItem,
        *,
        current_quantity: Decimal,
        delta: Decimal,
        committed: Decimal = Decimal("0"),
    ) -> Decimal:
        """
        retorna o snapshot usado (para gravar no item).
        committed: unidades já baixadas pelo documento em edição, que voltam
        a ficar disponíveis para a mesma linha.
        """
        available = self.snapshot(line)
        check_quantity(
            controls_stock=line.controls_stock,
            current_quantity=current_quantity,
            delta=delta,
            available=available + committed,
            item_id=line.item_id,
            variation_id=line.variation_id,
            name=line.label(),
        )
        return available
