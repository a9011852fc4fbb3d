"""
Print-on-demand fulfillment vendor (Printful).

PrintfulClient is a thin wrapper over the REST API. The service functions below
sync the vendor catalog into ``products`` and hand paid orders over for
fulfillment; they accept any object with the client's methods so tests can pass
a fake.
"""
import logging
import re
from typing import Any, Dict, List, Optional

import requests

import config
from database import Store, now_utc
from errors import ExternalServiceError, NotFound, StorefrontError, ValidationError

logger = logging.getLogger("storefront")

SYNCED_STOCK = 999  # vendor manages inventory for print-on-demand items


class PrintfulClient:
    service = "Printful"

    def __init__(self, api_key: str = None, base_url: str = None, timeout: float = None):
        self.base_url = (base_url or config.PRINTFUL_API_BASE).rstrip("/")
        self.timeout = timeout or config.PRINTFUL_TIMEOUT
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key if api_key is not None else config.PRINTFUL_API_KEY}",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, path: str, what: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        try:
            response = self.session.request(method, f"{self.base_url}{path}", json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            detail = exc.response.text[:200] if getattr(exc, "response", None) is not None else str(exc)
            logger.error("Printful %s failed: %s", what, detail)
            raise ExternalServiceError(self.service, f"Failed to {what}: {exc}")
        except ValueError as exc:
            raise ExternalServiceError(self.service, f"Failed to {what}: invalid JSON response ({exc})")

    def get_store_products(self) -> Dict[str, Any]:
        return self._request("GET", "/store/products", "fetch store products")

    def get_product_details(self, product_id) -> Dict[str, Any]:
        return self._request("GET", f"/store/products/{product_id}", "fetch product details")

    def create_order(self, order_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/orders", "create order", order_data)

    def get_order_status(self, order_id) -> Dict[str, Any]:
        return self._request("GET", f"/orders/{order_id}", "fetch order status")


def get_printful() -> PrintfulClient:
    return PrintfulClient()


def generate_slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _money(value) -> str:
    return f"{float(value or 0):.2f}"


# ---------------------- Catalog sync ----------------------

def product_from_variant(sync_product: Dict[str, Any], variant: Dict[str, Any]) -> Dict[str, Any]:
    previews = [f.get("preview_url") for f in variant.get("files") or [] if f.get("type") == "preview"]
    catalog = variant.get("product") or {}
    try:
        price = float(variant.get("retail_price") or 0)
    except (TypeError, ValueError):
        price = 0.0
    return {
        "name": f"{sync_product['name']} - {variant['name']}",
        "slug": generate_slug(f"{sync_product['name']} {variant['name']}"),
        "description": sync_product.get("description") or "",
        "price": price,
        "compareAtPrice": None,
        "stockQuantity": SYNCED_STOCK,
        "imageUrl": previews[0] if previews else None,
        "images": [p for p in previews if p],
        "isActive": True,
        "isPrintful": True,
        "printfulSyncProductId": sync_product["id"],
        "printfulSyncVariantId": variant["id"],
        "metadata": {
            "category": "Print-on-Demand",
            "sku": variant.get("sku") or f"PRINTFUL-{variant['id']}",
            "printfulProductId": catalog.get("product_id"),
            "printfulVariantId": catalog.get("variant_id"),
        },
    }


def sync_products(store: Store, client) -> Dict[str, Any]:
    """Upsert one catalog item per vendor sync variant, keyed by printfulSyncVariantId."""
    logger.info("Starting Printful product sync")
    listing = client.get_store_products().get("result") or []
    logger.info("Found %d Printful products", len(listing))

    synced: List[str] = []
    errors: List[Dict[str, Any]] = []
    for summary in listing:
        try:
            details = client.get_product_details(summary["id"]).get("result") or {}
        except StorefrontError as exc:
            errors.append({"product": summary.get("id"), "error": exc.message})
            continue

        sync_product = details.get("sync_product") or {}
        for variant in details.get("sync_variants") or []:
            try:
                product = product_from_variant(sync_product, variant)
                now = now_utc()
                existing = store.find_one("products", {"printfulSyncVariantId": variant["id"]})
                if existing:
                    store.update("products", existing["id"], {**product, "updatedAt": now})
                    logger.info("Updated: %s", product["name"])
                else:
                    store.insert("products", {**product, "variants": [], "isFeatured": False,
                                              "categoryId": None, "createdAt": now, "updatedAt": now})
                    logger.info("Created: %s", product["name"])
                synced.append(product["name"])
            except (StorefrontError, KeyError) as exc:
                logger.error("Error processing variant %s: %s", variant.get("id"), exc)
                errors.append({"variant": variant.get("name"), "error": str(exc)})

    logger.info("Printful sync completed: %d synced, %d errors", len(synced), len(errors))
    body: Dict[str, Any] = {
        "success": True,
        "message": f"Successfully synced {len(synced)} products",
        "syncedCount": len(synced),
        "errorCount": len(errors),
    }
    if errors:
        body["errors"] = errors
    return body


# ---------------------- Fulfillment ----------------------

def build_order_payload(order: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, Any]:
    address = order.get("shippingAddress") or {}
    return {
        "recipient": {
            "name": address.get("name") or order.get("customerName"),
            "address1": address.get("address1"),
            "address2": address.get("address2") or "",
            "city": address.get("city"),
            "state_code": address.get("state"),
            "country_code": address.get("country") or "US",
            "zip": address.get("zip"),
            "phone": address.get("phone") or "",
            "email": order.get("customerEmail"),
        },
        "items": items,
        "retail_costs": {
            "currency": config.CURRENCY,
            "subtotal": _money(order.get("subtotal")),
            "shipping": _money(order.get("shipping")),
            "tax": _money(order.get("tax")),
            "total": _money(order.get("total")),
        },
    }


def submit_order(store: Store, client, order_id: str) -> Dict[str, Any]:
    """Submit an order's vendor-fulfilled lines. Repeat calls return the stored vendor id."""
    if not order_id:
        raise ValidationError("Order ID is required")
    order = store.get("orders", order_id)
    if order is None:
        raise NotFound("Order not found")

    if order.get("printfulOrderId"):
        return {
            "success": True,
            "message": "Order already submitted to Printful",
            "printfulOrderId": order["printfulOrderId"],
        }

    items = []
    for line in order.get("items") or []:
        product = store.get("products", line.get("productId"))
        if product and product.get("isPrintful"):
            items.append({
                "sync_variant_id": product.get("printfulSyncVariantId"),
                "quantity": line.get("quantity"),
                "retail_price": _money(line.get("productPrice")),
            })

    if not items:
        return {"success": True, "message": "No Printful items in order"}

    result = client.create_order(build_order_payload(order, items)).get("result") or {}
    if result.get("id") is None:
        raise ExternalServiceError(PrintfulClient.service, "Order response did not include an id")

    store.update("orders", order_id, {
        "printfulOrderId": result["id"],
        "printfulOrderStatus": result.get("status"),
        "updatedAt": now_utc(),
    })
    logger.info("Order %s submitted to Printful: %s", order_id, result["id"])
    return {
        "success": True,
        "message": "Order submitted to Printful successfully",
        "printfulOrderId": result["id"],
        "printfulOrderStatus": result.get("status"),
    }


def refresh_order_status(store: Store, client, order_id: str) -> Dict[str, Any]:
    order = store.get("orders", order_id)
    if order is None:
        raise NotFound("Order not found")
    if not order.get("printfulOrderId"):
        return {"success": True, "message": "Order not submitted to Printful", "hasPrintfulOrder": False}

    result = client.get_order_status(order["printfulOrderId"]).get("result") or {}
    store.update("orders", order_id, {"printfulOrderStatus": result.get("status"), "updatedAt": now_utc()})
    return {
        "success": True,
        "printfulOrderId": order["printfulOrderId"],
        "status": result.get("status"),
        "shipments": result.get("shipments") or [],
    }
