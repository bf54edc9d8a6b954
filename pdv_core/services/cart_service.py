# pdv_core/services/cart_service.py
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional, Union

from pdv_core.errors import (
    CartFinalized,
    CompositePriceLocked,
    InvalidCatalogReference,
    LineNotFound,
)
from pdv_core.money import non_negative
from pdv_core.schemas.cart import (
    Cart,
    CartLineItem,
    CommittedStock,
    CustomerRef,
    DiscountSpec,
    FreightSpec,
)
from pdv_core.schemas.catalog import CatalogItem, CompositeComponent, VariationOption
from pdv_core.schemas.documents import FinalizedDocument
from pdv_core.services.catalog_resolver import normalize_catalog_record, resolve_line_template
from pdv_core.services.ports import CatalogSource
from pdv_core.services.pricing import apply_totals, parse_quantity, reprice_composite_line
from pdv_core.services.stock import StockValidator

logger = logging.getLogger(__name__)

CartListener = Callable[[Cart], None]

STATE_EMPTY = "empty"
STATE_BUILDING = "building"
STATE_READY = "ready-to-finalize"
STATE_FINALIZED = "finalized"

LINE_FIELDS = ("quantity", "unit_price", "unit_cost", "variation")


def has_meaningful_content(cart: Cart) -> bool:
    customer_name = cart.customer.name.strip() if cart.customer else ""
    customer_id = cart.customer.id if cart.customer else None
    return bool(
        cart.lines
        or customer_id
        or customer_name
        or cart.name.strip()
        or cart.notes.strip()
    )


def normalize_customer(customer: Union[CustomerRef, Mapping[str, Any], str, None]) -> Optional[CustomerRef]:
    if customer is None or isinstance(customer, CustomerRef):
        return customer
    if isinstance(customer, str):
        name = customer.strip()
        # cliente avulso (nome livre, sem cadastro)
        return CustomerRef(name=name) if name else None
    cid = customer.get("id") or customer.get("cliente_id")
    name = customer.get("nome_completo") or customer.get("nome") or customer.get("name") or ""
    return CustomerRef(
        id=str(cid) if cid not in (None, "", "null") else None,
        name=str(name),
        document=customer.get("cpf_cnpj") or customer.get("document"),
    )


class CartSession:
    """
    máquina de estados do carrinho/orçamento (empty -> building ->
    ready-to-finalize -> finalized).

    toda mutação recalcula os totais antes de retornar; rejeições
    (estoque, preço de kit travado, item inexistente) não alteram o estado.
    """

    def __init__(
        self,
        cart: Optional[Cart] = None,
        *,
        stock: Optional[StockValidator] = None,
        catalog: Optional[CatalogSource] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self._cart = apply_totals(cart.model_copy(deep=True) if cart is not None else Cart())
        self.stock = stock or StockValidator()
        self.catalog = catalog
        self._today = today or date.today
        self._finalized = False
        self._items: dict[str, CatalogItem] = {}
        self._on_change: list[CartListener] = []
        self._on_reset: list[CartListener] = []

    # leitura
    @property
    def cart(self) -> Cart:
        return self._cart.model_copy(deep=True)

    @property
    def state(self) -> str:
        if self._finalized:
            return STATE_FINALIZED
        if self._cart.lines:
            return STATE_READY
        if has_meaningful_content(self._cart):
            return STATE_BUILDING
        return STATE_EMPTY

    def subscribe(self, on_change: CartListener, on_reset: Optional[CartListener] = None) -> None:
        self._on_change.append(on_change)
        if on_reset is not None:
            self._on_reset.append(on_reset)

    # internos
    def _working_copy(self) -> Cart:
        if self._finalized:
            raise CartFinalized("Documento já finalizado: inicie um novo carrinho.")
        return self._cart.model_copy(deep=True)

    def _commit(self, cart: Cart) -> Cart:
        for line in cart.lines:
            if line.price_locked:
                reprice_composite_line(line)
        self._cart = apply_totals(cart)
        snapshot = self.cart
        for listener in self._on_change:
            listener(snapshot)
        return snapshot

    def _line(self, cart: Cart, line_id: str) -> CartLineItem:
        line = cart.find_line(line_id)
        if line is None:
            raise LineNotFound(line_id)
        return line

    def _catalog_item(self, item_id: str) -> CatalogItem:
        item = self._items.get(item_id)
        if item is None and self.catalog is not None:
            item = self.catalog.get_item(item_id)
        if item is None:
            raise InvalidCatalogReference(f"Produto {item_id} não encontrado no catálogo.")
        return item

    # itens
    def add_line(
        self,
        item: Union[CatalogItem, Mapping[str, Any]],
        quantity: Any = 1,
        variation: Union[VariationOption, str, None] = None,
    ) -> CartLineItem:
        cart = self._working_copy()
        catalog_item = normalize_catalog_record(item)
        template = resolve_line_template(catalog_item, variation, quantity=quantity, today=self._today())

        existing = cart.find_by_key(template.item_id, template.variation_id)
        current = existing.quantity if existing is not None else Decimal("0")
        available = self.stock.validate(
            template,
            current_quantity=current,
            delta=template.quantity,
            committed=cart.committed_for(template.item_id, template.variation_id),
        )

        if existing is not None:
            existing.quantity = current + template.quantity
            existing.available_stock = available
            line = existing
        else:
            template.available_stock = available
            cart.lines.append(template)
            line = template

        self._items[catalog_item.id] = catalog_item
        self._commit(cart)
        logger.debug("[cart] add %s qty=%s -> %s", line.label(), template.quantity, line.quantity)
        return line.model_copy(deep=True)

    def update_line(self, line_id: str, field: str, value: Any) -> CartLineItem:
        if field not in LINE_FIELDS:
            raise ValueError(f"Campo inválido: {field}")

        cart = self._working_copy()
        line = self._line(cart, line_id)

        if field == "quantity":
            new_qty = parse_quantity(value)
            available = self.stock.validate(
                line,
                current_quantity=line.quantity,
                delta=new_qty - line.quantity,
                committed=cart.committed_for(line.item_id, line.variation_id),
            )
            line.quantity = new_qty
            line.available_stock = available
        elif field in ("unit_price", "unit_cost"):
            if line.price_locked:
                raise CompositePriceLocked(
                    f"O preço do kit {line.name} é a soma dos componentes e não pode ser editado."
                )
            setattr(line, field, non_negative(value))
            if field == "unit_price":
                # preço manual descarta o snapshot de promoção
                line.promotion = None
        else:
            line = self._change_variation(cart, line, value)

        self._commit(cart)
        return line.model_copy(deep=True)

    def _change_variation(self, cart: Cart, line: CartLineItem, variation: Any) -> CartLineItem:
        item = self._catalog_item(line.item_id)
        template = resolve_line_template(item, variation, quantity=line.quantity, today=self._today())
        other = cart.find_by_key(template.item_id, template.variation_id)

        if other is not None and other.line_id != line.line_id:
            # mesma variação já está no carrinho: soma as quantidades
            available = self.stock.validate(
                other,
                current_quantity=other.quantity,
                delta=line.quantity,
                committed=cart.committed_for(other.item_id, other.variation_id),
            )
            other.quantity += line.quantity
            other.available_stock = available
            cart.lines = [l for l in cart.lines if l.line_id != line.line_id]
            return other

        available = self.stock.validate(
            template,
            current_quantity=Decimal("0"),
            delta=line.quantity,
            committed=cart.committed_for(template.item_id, template.variation_id),
        )
        template.line_id = line.line_id
        template.available_stock = available
        cart.lines = [template if l.line_id == line.line_id else l for l in cart.lines]
        return template

    def remove_line(self, line_id: str) -> None:
        cart = self._working_copy()
        self._line(cart, line_id)
        cart.lines = [l for l in cart.lines if l.line_id != line_id]
        self._commit(cart)

    # kits
    def add_component(self, line_id: str, component: Union[CompositeComponent, Mapping[str, Any]]) -> CartLineItem:
        cart = self._working_copy()
        line = self._line(cart, line_id)
        comp = component if isinstance(component, CompositeComponent) else CompositeComponent.model_validate(component)

        merged = False
        for i, existing in enumerate(line.components):
            if existing.item_id == comp.item_id:
                line.components[i] = existing.model_copy(update={"quantity": existing.quantity + comp.quantity})
                merged = True
                break
        if not merged:
            line.components.append(comp)

        if not line.is_composite:
            line.is_composite = True
            line.controls_stock = line.variation_id is not None
        reprice_composite_line(line)
        self._commit(cart)
        return line.model_copy(deep=True)

    def remove_component(self, line_id: str, item_id: str) -> CartLineItem:
        cart = self._working_copy()
        line = self._line(cart, line_id)
        remaining = [c for c in line.components if c.item_id != str(item_id)]
        if len(remaining) == len(line.components):
            raise LineNotFound(f"{line_id}/{item_id}")
        line.components = remaining
        reprice_composite_line(line)
        self._commit(cart)
        return line.model_copy(deep=True)

    def resize_component(self, line_id: str, item_id: str, quantity: Any) -> CartLineItem:
        qty = parse_quantity(quantity)
        if qty <= 0:
            return self.remove_component(line_id, item_id)

        cart = self._working_copy()
        line = self._line(cart, line_id)
        for i, existing in enumerate(line.components):
            if existing.item_id == str(item_id):
                line.components[i] = existing.model_copy(update={"quantity": qty})
                break
        else:
            raise LineNotFound(f"{line_id}/{item_id}")
        reprice_composite_line(line)
        self._commit(cart)
        return line.model_copy(deep=True)

    # cabeçalho
    def set_discount(self, spec: Union[DiscountSpec, Mapping[str, Any], None] = None, **kwargs: Any) -> Cart:
        cart = self._working_copy()
        if spec is None:
            spec = DiscountSpec(**kwargs)
        elif not isinstance(spec, DiscountSpec):
            spec = DiscountSpec.model_validate(spec)
        cart.discount = spec
        return self._commit(cart)

    def set_freight(self, freight: Union[FreightSpec, Mapping[str, Any], Any, None]) -> Cart:
        cart = self._working_copy()
        if freight is None:
            freight = FreightSpec()
        elif isinstance(freight, Mapping):
            freight = FreightSpec.model_validate(freight)
        elif not isinstance(freight, FreightSpec):
            freight = FreightSpec(value=freight)
        cart.freight = freight
        return self._commit(cart)

    def set_customer(self, customer: Union[CustomerRef, Mapping[str, Any], str, None]) -> Cart:
        cart = self._working_copy()
        cart.customer = normalize_customer(customer)
        return self._commit(cart)

    def set_notes(self, notes: Optional[str]) -> Cart:
        cart = self._working_copy()
        cart.notes = notes or ""
        return self._commit(cart)

    def set_name(self, name: Optional[str]) -> Cart:
        cart = self._working_copy()
        cart.name = name or ""
        return self._commit(cart)

    def set_seller(self, seller_id: Optional[str], seller_name: Optional[str] = None) -> Cart:
        cart = self._working_copy()
        cart.seller_id = seller_id
        cart.seller_name = seller_name
        return self._commit(cart)

    def set_kind(self, kind: str) -> Cart:
        if kind not in ("sale", "quote"):
            raise ValueError(f"Tipo de documento inválido: {kind}")
        cart = self._working_copy()
        cart.kind = kind
        return self._commit(cart)

    # ciclo de vida
    def clear(self) -> Cart:
        """descarta o carrinho atual e começa outro (mantém o vendedor)."""
        previous = self._cart
        self._cart = apply_totals(
            Cart(kind=previous.kind, seller_id=previous.seller_id, seller_name=previous.seller_name)
        )
        self._finalized = False
        self._items.clear()
        snapshot = self.cart
        for listener in self._on_reset:
            listener(snapshot)
        return snapshot

    def mark_finalized(self) -> None:
        self._finalized = True

    def _fresh_stock(self, line: CartLineItem) -> Decimal:
        if self.stock.inventory is not None:
            return self.stock.snapshot(line)
        item = self.catalog.get_item(line.item_id) if self.catalog is not None else None
        if item is None:
            return Decimal("0")
        var = item.find_variation(line.variation_id) if line.variation_id else None
        if line.variation_id and var is None:
            return Decimal("0")
        return var.stock if var is not None else item.stock

    @classmethod
    def from_document(
        cls,
        document: FinalizedDocument,
        *,
        convert: bool = True,
        **kwargs: Any,
    ) -> "CartSession":
        """
        abre um documento salvo para edição.
          - orçamento + convert=True: vira venda ligada ao orçamento (reusa o id)
          - demais casos: edição do registro existente (pré-venda)

        venda em edição carrega as quantidades já baixadas (committed_stock):
        a validação libera essas unidades de volta pra mesma linha e a
        finalização só movimenta a diferença.
        """
        lines = [
            CartLineItem(
                item_id=l.item_id,
                variation_id=l.variation_id,
                variation_label=l.variation_label,
                name=l.name,
                code=l.code,
                unit=l.unit,
                quantity=l.quantity,
                unit_price=l.unit_price,
                unit_cost=l.unit_cost,
                controls_stock=l.controls_stock,
                promotion=l.promotion,
                is_composite=bool(l.components),
                components=list(l.components),
            )
            for l in document.lines
        ]
        committed = []
        if document.type == "sale":
            committed = [
                CommittedStock(item_id=l.item_id, variation_id=l.variation_id, quantity=l.quantity)
                for l in document.lines
                if l.controls_stock
            ]

        cart = Cart(
            kind=document.type,
            name="",
            customer=document.customer,
            lines=lines,
            discount=document.discount,
            freight=document.freight,
            notes=document.notes,
            seller_id=document.seller_id,
            seller_name=document.seller_name,
            committed_stock=committed,
        )
        if document.type == "quote" and convert:
            cart.kind = "sale"
            cart.source_quote_id = document.id
        else:
            cart.editing_document_id = document.id

        session = cls(cart, **kwargs)
        # leitura fresca (estoque ou catálogo); sem nenhum dos dois fica 0
        for line in session._cart.lines:
            line.available_stock = session._fresh_stock(line)
        return session
