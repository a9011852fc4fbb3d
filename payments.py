"""Hosted checkout through the Square payment-links API."""
import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import requests

import config
from errors import ExternalServiceError, ServerError

logger = logging.getLogger("storefront")

SQUARE_HOSTS = {
    "production": "https://connect.squareup.com",
    "sandbox": "https://connect.squareupsandbox.com",
}


def square_api_url() -> str:
    return SQUARE_HOSTS.get(config.SQUARE_ENVIRONMENT, SQUARE_HOSTS["sandbox"])


def to_cents(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_payment_link_request(cart: List[Dict[str, Any]], customer_email: str,
                               customer_name: Optional[str] = None) -> Dict[str, Any]:
    line_items = [
        {
            "name": item["name"],
            "quantity": str(int(item["quantity"])),
            "base_price_money": {"amount": to_cents(item["price"]), "currency": config.CURRENCY},
        }
        for item in cart
    ]
    body: Dict[str, Any] = {
        "idempotency_key": f"checkout_{uuid.uuid4().hex}",
        "order": {
            "location_id": config.SQUARE_LOCATION_ID,
            "line_items": line_items,
        },
        "checkout_options": {
            "redirect_url": config.CHECKOUT_REDIRECT_URL,
            "ask_for_shipping_address": True,
        },
        "pre_populate_buyer_email": customer_email,
    }
    if customer_name:
        body["pre_populate_shipping_address"] = {"country": "US", "first_name": customer_name}
    return body


def create_payment_link(cart: List[Dict[str, Any]], customer_email: str,
                        customer_name: Optional[str] = None) -> Dict[str, Any]:
    if not config.SQUARE_ACCESS_TOKEN or not config.SQUARE_LOCATION_ID:
        raise ServerError("Payment provider is not configured")

    body = build_payment_link_request(cart, customer_email, customer_name)
    try:
        response = requests.post(
            f"{square_api_url()}/v2/online-checkout/payment-links",
            json=body,
            headers={
                "Authorization": f"Bearer {config.SQUARE_ACCESS_TOKEN}",
                "Square-Version": config.SQUARE_API_VERSION,
                "Content-Type": "application/json",
            },
            timeout=config.SQUARE_TIMEOUT,
        )
    except requests.RequestException as exc:
        logger.error("Square request failed: %s", exc)
        raise ExternalServiceError("Square", str(exc))

    try:
        data = response.json()
    except ValueError:
        data = {}
    if response.status_code != 200:
        logger.error("Square API error %s: %s", response.status_code, data.get("errors"))
        raise ExternalServiceError("Square", f"API error {response.status_code}")

    link = data.get("payment_link") or {}
    if not link.get("url"):
        raise ExternalServiceError("Square", "No checkout URL in response")
    return {"success": True, "checkoutUrl": link["url"], "orderId": link.get("id")}
