"""Back-office reports computed over fetched collections."""
from collections import Counter, OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from database import Store, now_utc
from orders import round_money, to_money
from segments import as_datetime

LOW_STOCK_THRESHOLD = 5

SALES_PERIODS = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}

ORDER_STATUSES = ["pending", "processing", "shipped", "delivered"]


def _money_sum(values) -> Decimal:
    return sum((to_money(v or 0) for v in values), Decimal("0"))


def _created_since(docs: List[Dict[str, Any]], since: datetime) -> List[Dict[str, Any]]:
    out = []
    for doc in docs:
        created = as_datetime(doc.get("createdAt"))
        if created is not None and created >= since:
            out.append(doc)
    return out


def dashboard_stats(store: Store, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or now_utc()
    products = store.find("products")
    orders = store.find("orders")
    posts = store.find("blog_posts")
    users = store.find("users")

    active = [p for p in products if p.get("isActive")]
    statuses = Counter(o.get("status") for o in orders)
    recent = _created_since(orders, now - timedelta(days=7))

    return {
        "products": {"total": len(products), "active": len(active)},
        "orders": {
            "total": len(orders),
            "revenue": round_money(_money_sum(o.get("total") for o in orders)),
            **{status: statuses.get(status, 0) for status in ORDER_STATUSES},
        },
        "blog": {
            "total": len(posts),
            "published": sum(1 for p in posts if p.get("isPublished")),
        },
        "users": {
            "total": len(users),
            "customers": sum(1 for u in users if u.get("role", "customer") == "customer"),
        },
        "alerts": {
            "lowStock": sum(1 for p in active if (p.get("stockQuantity") or 0) < LOW_STOCK_THRESHOLD),
        },
        "recent": {
            "ordersLast7Days": len(recent),
            "revenueLast7Days": round_money(_money_sum(o.get("total") for o in recent)),
        },
    }


def sales_stats(store: Store, period: str = "30d", now: Optional[datetime] = None) -> Dict[str, Any]:
    """Order count, revenue and average order value per day (per month for ``1y``)."""
    now = now or now_utc()
    window = SALES_PERIODS.get(period, SALES_PERIODS["30d"])
    monthly = period == "1y"

    buckets: "OrderedDict[str, List[Decimal]]" = OrderedDict()
    orders = _created_since(store.find("orders"), now - window)
    for order in sorted(orders, key=lambda o: as_datetime(o["createdAt"])):
        created = as_datetime(order["createdAt"])
        day = created.date().replace(day=1) if monthly else created.date()
        buckets.setdefault(day.isoformat(), []).append(to_money(order.get("total") or 0))

    data = []
    for date, totals in buckets.items():
        revenue = sum(totals, Decimal("0"))
        data.append({
            "date": date,
            "orderCount": len(totals),
            "revenue": round_money(revenue),
            "avgOrderValue": round_money(revenue / len(totals)),
        })
    return {"period": period, "data": data}


def top_products(store: Store, limit: int = 10) -> Dict[str, Any]:
    units: Counter = Counter()
    revenue: Dict[str, Decimal] = {}
    names: Dict[str, str] = {}
    for order in store.find("orders", {"status": {"$ne": "cancelled"}}):
        for item in order.get("items") or []:
            pid = item.get("productId")
            units[pid] += int(item.get("quantity") or 0)
            revenue[pid] = revenue.get(pid, Decimal("0")) + to_money(item.get("subtotal") or 0)
            names.setdefault(pid, item.get("productName"))

    ranked = []
    for pid, sold in units.most_common(limit):
        product = store.get("products", pid) or {}
        ranked.append({
            "id": pid,
            "name": product.get("name") or names.get(pid),
            "price": product.get("price"),
            "imageUrl": product.get("imageUrl"),
            "unitsSold": sold,
            "revenue": round_money(revenue[pid]),
        })
    return {"products": ranked}


def customer_stats(store: Store, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or now_utc()
    orders = store.find("orders")
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    per_user = Counter(o["userId"] for o in orders if o.get("userId"))
    new_this_month = {o["userId"] for o in _created_since(orders, month_start) if o.get("userId")}
    avg = _money_sum(o.get("total") for o in orders) / len(orders) if orders else Decimal("0")

    return {
        "totalCustomers": len(per_user),
        "newThisMonth": len(new_this_month),
        "repeatCustomers": sum(1 for count in per_user.values() if count > 1),
        "avgOrderValue": round_money(avg),
    }


def inventory_stats(store: Store) -> Dict[str, Any]:
    active = store.find("products", {"isActive": True})
    total_value = sum((to_money(p.get("price") or 0) * int(p.get("stockQuantity") or 0) for p in active),
                      Decimal("0"))
    low = sorted(
        (p for p in active if (p.get("stockQuantity") or 0) < LOW_STOCK_THRESHOLD),
        key=lambda p: p.get("stockQuantity") or 0,
    )
    per_category = Counter(p.get("categoryId") for p in active if p.get("categoryId"))
    distribution = [
        {"name": c.get("name"), "productCount": per_category.get(c["id"], 0)}
        for c in store.find("categories")
    ]
    distribution.sort(key=lambda row: row["productCount"], reverse=True)

    return {
        "totalValue": round_money(total_value),
        "lowStock": [
            {"id": p["id"], "name": p.get("name"), "stockQuantity": p.get("stockQuantity") or 0,
             "price": p.get("price")}
            for p in low
        ],
        "outOfStock": [
            {"id": p["id"], "name": p.get("name"), "price": p.get("price")}
            for p in active if (p.get("stockQuantity") or 0) == 0
        ],
        "categoryDistribution": distribution,
    }


def user_stats(users: List[Dict[str, Any]]) -> Dict[str, Any]:
    roles = Counter(u.get("role") for u in users)
    levels = Counter(u.get("experienceLevel") for u in users)
    return {
        "totalUsers": len(users),
        "usersByRole": {role: roles.get(role, 0) for role in ("admin", "customer", "contributor", "affiliate")},
        "marketingStats": {
            "emailOptIn": sum(1 for u in users if u.get("emailOptIn") is True),
            "smsOptIn": sum(1 for u in users if u.get("smsOptIn") is True),
            "trackingOptIn": sum(1 for u in users if u.get("trackingOptIn") is True),
        },
        "experienceLevels": {
            "beginner": levels.get("beginner", 0),
            "intermediate": levels.get("intermediate", 0),
            "advanced": levels.get("advanced", 0),
            "notSet": sum(1 for u in users if not u.get("experienceLevel")),
        },
        "totalLifetimeValue": round_money(_money_sum(u.get("lifetimeValue") for u in users)),
    }
