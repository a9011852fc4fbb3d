"""Client cart aggregate.

A cart is an immutable tuple of CartLine; every reducer returns a new cart and
leaves its input untouched. Lines are keyed by (product_id, variant_id).
"""
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from orders import compute_totals, to_money
from schemas import OrderItemRequest


@dataclass(frozen=True)
class CartLine:
    product_id: str
    name: str
    price: Decimal
    quantity: int = 1
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    image: Optional[str] = None

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return self.product_id, self.variant_id


Cart = Tuple[CartLine, ...]

EMPTY_CART: Cart = ()


def add_item(cart: Cart, line: CartLine) -> Cart:
    """Add a line, merging quantities with an existing line for the same product and variant."""
    if line.quantity < 1:
        return cart
    out = []
    merged = False
    for existing in cart:
        if existing.key == line.key:
            existing = replace(existing, quantity=existing.quantity + line.quantity)
            merged = True
        out.append(existing)
    if not merged:
        out.append(line)
    return tuple(out)


def remove_item(cart: Cart, product_id: str, variant_id: Optional[str] = None) -> Cart:
    return tuple(line for line in cart if line.key != (product_id, variant_id))


def set_quantity(cart: Cart, product_id: str, quantity: int, variant_id: Optional[str] = None) -> Cart:
    # quantities never drop below one; removal is explicit
    quantity = max(1, quantity)
    return tuple(
        replace(line, quantity=quantity) if line.key == (product_id, variant_id) else line
        for line in cart
    )


def item_count(cart: Cart) -> int:
    return sum(line.quantity for line in cart)


def summarize(cart: Cart) -> Dict[str, float]:
    subtotal = sum((to_money(line.price) * line.quantity for line in cart), Decimal("0"))
    return {"itemCount": item_count(cart), **compute_totals(subtotal).rounded()}


def to_order_items(cart: Cart) -> List[OrderItemRequest]:
    return [
        OrderItemRequest(product_id=line.product_id, quantity=line.quantity, variant_id=line.variant_id)
        for line in cart
    ]
