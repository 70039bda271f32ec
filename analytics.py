"""
Admin analytics

Pure aggregation over order, product and user documents: dashboard totals,
a revenue series bucketed by week/month/year, top products by revenue and the
new/returning customer split.
"""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

GRANULARITIES = ("week", "month", "year")
MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def _aware(value: datetime) -> datetime:
    # pymongo hands back naive UTC datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def default_periods(granularity: str) -> int:
    return 5 if granularity == "year" else 12


def series_start(granularity: str, periods: int, now: datetime) -> datetime:
    now = _aware(now)
    if granularity == "week":
        return now - timedelta(weeks=periods)
    if granularity == "year":
        return datetime(now.year - periods + 1, 1, 1, tzinfo=timezone.utc)
    months_back = periods - 1
    year = now.year + (now.month - 1 - months_back) // 12
    month = (now.month - 1 - months_back) % 12 + 1
    return datetime(year, month, 1, tzinfo=timezone.utc)


def _bucket(granularity: str, created_at: datetime) -> Tuple[int, ...]:
    if granularity == "week":
        iso = created_at.isocalendar()
        return (iso[0], iso[1])
    if granularity == "year":
        return (created_at.year,)
    return (created_at.year, created_at.month)


def _label(granularity: str, key: Tuple[int, ...]) -> str:
    if granularity == "week":
        return f"W{key[1]} {key[0]}"
    if granularity == "year":
        return f"{key[0]}"
    return f"{MONTH_NAMES[key[1] - 1]} {key[0]}"


def sales_series(orders: Iterable[Dict[str, Any]], granularity: str = "month", periods: Optional[int] = None, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Revenue and order count per bucket, oldest first; empty buckets are omitted."""
    if granularity not in GRANULARITIES:
        granularity = "month"
    periods = periods or default_periods(granularity)
    start = series_start(granularity, periods, now or datetime.now(timezone.utc))

    buckets: Dict[Tuple[int, ...], Dict[str, float]] = defaultdict(lambda: {"revenue": 0.0, "orders": 0})
    for order in orders:
        created_at = order.get("created_at")
        if not isinstance(created_at, datetime):
            continue
        created_at = _aware(created_at)
        if created_at < start:
            continue
        bucket = buckets[_bucket(granularity, created_at)]
        bucket["revenue"] += float(order.get("total_price") or 0)
        bucket["orders"] += 1

    return [
        {"month": _label(granularity, key), "revenue": round(value["revenue"], 2), "orders": int(value["orders"])}
        for key, value in sorted(buckets.items())
    ]


def product_stats(orders: Iterable[Dict[str, Any]], product_names: Dict[str, str], limit: int = 5) -> List[Dict[str, Any]]:
    sales: Dict[str, int] = defaultdict(int)
    revenue: Dict[str, float] = defaultdict(float)
    for order in orders:
        for item in order.get("order_items") or []:
            product_id = str(item.get("product") or "")
            if not product_id:
                continue
            quantity = int(item.get("quantity") or 0)
            sales[product_id] += quantity
            revenue[product_id] += quantity * float(item.get("price") or 0)

    ranked = sorted(revenue, key=lambda pid: revenue[pid], reverse=True)[:limit]
    return [
        {
            "name": product_names.get(pid, "Unknown Product"),
            "sales": sales[pid],
            "revenue": round(revenue[pid], 2),
        }
        for pid in ranked
    ]


def user_stats(orders: Iterable[Dict[str, Any]], admin_count: int) -> List[Dict[str, Any]]:
    per_user: Dict[str, int] = defaultdict(int)
    for order in orders:
        uid = str(order.get("user") or "")
        if uid:
            per_user[uid] += 1
    returning = sum(1 for count in per_user.values() if count > 1)
    new = sum(1 for count in per_user.values() if count == 1)
    return [
        {"name": "New Customers", "value": new, "color": "#8884d8"},
        {"name": "Returning Customers", "value": returning, "color": "#82ca9d"},
        {"name": "Admins", "value": admin_count, "color": "#ffc658"},
    ]


def totals(orders: List[Dict[str, Any]], total_products: int, total_users: int) -> Dict[str, Any]:
    return {
        "total_revenue": round(sum(float(o.get("total_price") or 0) for o in orders), 2),
        "total_orders": len(orders),
        "total_products": total_products,
        "total_users": total_users,
    }
