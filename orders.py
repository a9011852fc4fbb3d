"""Order placement: stock validation, pricing and the inventory decrement.

Everything that reads or writes catalog stock for an order happens inside one
store transaction, so two placements racing for the same item cannot both
succeed when their combined quantity exceeds the stock.
"""
import copy
import logging
import random
import string
import time
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence

import config
from database import Store, now_utc
from errors import InsufficientStock, NotFound, ServerError, Unavailable, ValidationError
from schemas import OrderItemRequest, PlaceOrderRequest

logger = logging.getLogger("storefront")

TWO_PLACES = Decimal("0.01")
_BASE36 = string.digits + string.ascii_uppercase


# ---------------------- Money ----------------------

def to_money(value) -> Decimal:
    return Decimal(str(value))


def round_money(value: Decimal) -> float:
    return float(value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


@dataclass
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal

    def rounded(self) -> Dict[str, float]:
        return {
            "subtotal": round_money(self.subtotal),
            "tax": round_money(self.tax),
            "shipping": round_money(self.shipping),
            "total": round_money(self.total),
        }


def compute_totals(subtotal: Decimal) -> Totals:
    """Tax and shipping are derived from the full-precision subtotal."""
    tax = subtotal * Decimal(config.TAX_RATE)
    if subtotal > Decimal(config.FREE_SHIPPING_THRESHOLD):
        shipping = Decimal("0")
    else:
        shipping = Decimal(config.FLAT_SHIPPING_FEE)
    return Totals(subtotal=subtotal, tax=tax, shipping=shipping, total=subtotal + tax + shipping)


# ---------------------- Order numbers ----------------------

def _base36(n: int) -> str:
    digits = []
    while True:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
        if n == 0:
            break
    return "".join(reversed(digits))


def generate_order_number(now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choices(_BASE36, k=4))
    return f"ORD-{_base36(now_ms)}-{suffix}"


def unique_order_number(store: Store, attempts: int = 5) -> str:
    for _ in range(attempts):
        number = generate_order_number()
        if store.find_one("orders", {"orderNumber": number}) is None:
            return number
    raise ServerError("Could not allocate a unique order number")


# ---------------------- Line resolution ----------------------

@dataclass
class StockState:
    stock_quantity: int
    variants: List[Dict[str, Any]]
    variants_changed: bool = False


@dataclass
class ResolvedOrder:
    lines: List[Dict[str, Any]] = field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    stock: Dict[str, StockState] = field(default_factory=dict)


def resolve_lines(items: Sequence[OrderItemRequest], products: Dict[str, Optional[Dict[str, Any]]]) -> ResolvedOrder:
    """Validate every line against the given product documents and price it.

    Lines for the same product draw from a running remaining stock, so two
    lines cannot together oversell an item. No writes happen here.
    """
    resolved = ResolvedOrder()
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            raise NotFound(f"Product {item.product_id} not found")
        name = product.get("name", item.product_id)
        if not product.get("isActive", False):
            raise Unavailable(f"Product {name} is not available")

        state = resolved.stock.get(item.product_id)
        if state is None:
            state = StockState(
                stock_quantity=int(product.get("stockQuantity") or 0),
                variants=copy.deepcopy(product.get("variants") or []),
            )
            resolved.stock[item.product_id] = state

        if state.stock_quantity < item.quantity:
            raise InsufficientStock(f"Insufficient stock for product {name}")

        price = to_money(product.get("price") or 0)
        variant_name = None
        if item.variant_id:
            variant = next((v for v in state.variants if v.get("id") == item.variant_id), None)
            if variant is None:
                raise NotFound(f"Variant {item.variant_id} not found for product {name}")
            variant_name = variant.get("name")
            if variant.get("price") is not None:
                price = to_money(variant["price"])
            if int(variant.get("stock") or 0) < item.quantity:
                raise InsufficientStock(f"Insufficient stock for variant {variant_name} of product {name}")
            variant["stock"] = int(variant.get("stock") or 0) - item.quantity
            state.variants_changed = True

        state.stock_quantity -= item.quantity
        line_subtotal = price * item.quantity
        resolved.subtotal += line_subtotal
        resolved.lines.append({
            "productId": item.product_id,
            "productName": name,
            "productPrice": round_money(price),
            "quantity": item.quantity,
            "variantId": item.variant_id,
            "variantName": variant_name,
            "subtotal": round_money(line_subtotal),
        })
    return resolved


def _unique_product_ids(items: Sequence[OrderItemRequest]) -> List[str]:
    seen: List[str] = []
    for item in items:
        if item.product_id not in seen:
            seen.append(item.product_id)
    return seen


# ---------------------- Placement ----------------------

def place_order(store: Store, request: PlaceOrderRequest, user_id: Optional[str] = None) -> Dict[str, Any]:
    if not request.items:
        raise ValidationError("At least one line item is required")

    order_number = unique_order_number(store)
    product_ids = _unique_product_ids(request.items)
    shipping_address = request.shipping_address.model_dump(by_alias=True, exclude_none=True)
    if request.billing_address is not None:
        billing_address = request.billing_address.model_dump(by_alias=True, exclude_none=True)
    else:
        billing_address = shipping_address

    def _transaction(txn) -> Dict[str, Any]:
        products = {pid: txn.get("products", pid) for pid in product_ids}
        resolved = resolve_lines(request.items, products)
        totals = compute_totals(resolved.subtotal)
        now = now_utc()

        for pid, state in resolved.stock.items():
            fields: Dict[str, Any] = {"stockQuantity": state.stock_quantity, "updatedAt": now}
            if state.variants_changed:
                fields["variants"] = state.variants
            txn.update("products", pid, fields)

        order = {
            "userId": user_id,
            "orderNumber": order_number,
            "customerEmail": str(request.customer_email),
            "customerName": request.customer_name,
            "shippingAddress": shipping_address,
            "billingAddress": billing_address,
            "items": resolved.lines,
            **totals.rounded(),
            "status": "pending",
            "paymentStatus": "pending",
            "paymentToken": request.payment_token,
            "notes": request.notes or "",
            "createdAt": now,
            "updatedAt": now,
        }
        order_id = txn.insert("orders", order)
        return {"id": order_id, **order}

    order = store.run_transaction(_transaction)
    logger.info("Order %s placed: %d line(s), total %.2f", order["orderNumber"], len(order["items"]), order["total"])
    return order


def quote_items(store: Store, items: Sequence[OrderItemRequest]) -> Dict[str, Any]:
    """Price a cart with the placement rules without reserving stock."""
    if not items:
        raise ValidationError("At least one line item is required")
    products = {pid: store.get("products", pid) for pid in _unique_product_ids(items)}
    resolved = resolve_lines(items, products)
    return {"items": resolved.lines, **compute_totals(resolved.subtotal).rounded()}
