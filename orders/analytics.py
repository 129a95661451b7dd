# orders/analytics.py
import calendar
from decimal import Decimal

PAID_STATUSES = ("verified", "paid")

CATEGORY_COLORS = {
    "Silk Sarees": "#8B5CF6",
    "Cotton Sarees": "#06B6D4",
    "Designer Sarees": "#F59E0B",
    "Bridal Sarees": "#EF4444",
    "Festive Wear": "#10B981",
    "Casual Sarees": "#6366F1",
}
DEFAULT_COLOR = "#8B5CF6"


def _shift_month(year, month, delta):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _month_start(now, delta):
    year, month = _shift_month(now.year, now.month, delta)
    return now.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)


def _local(dt, now):
    if dt.tzinfo is not None and now.tzinfo is not None:
        return dt.astimezone(now.tzinfo)
    return dt


def _percent(numerator, denominator):
    if not denominator:
        return 0.0
    return round(float(numerator) / float(denominator) * 100, 1)


def _stock_status(stock):
    if stock <= 5:
        return "low"
    if stock <= 15:
        return "medium"
    return "good"


def build_analytics(orders, products, customers, now):
    """
    Dashboard metrics from already-fetched rows.

    orders: dicts with user_id, total_amount, payment_status, created_at and
            items [{product_id, name, category, price, quantity}]
    products: dicts with id, name, stock_quantity (None when untracked)
    customers: customer profile rows, only counted
    """
    paid_orders = [o for o in orders if o["payment_status"] in PAID_STATUSES]

    total_revenue = sum((Decimal(str(o["total_amount"] or 0)) for o in paid_orders), Decimal("0"))

    # Last 3 calendar months vs the 3 before
    three_months_ago = _month_start(now, -3)
    six_months_ago = _month_start(now, -6)
    recent_revenue = Decimal("0")
    previous_revenue = Decimal("0")
    for order in paid_orders:
        created = _local(order["created_at"], now)
        amount = Decimal(str(order["total_amount"] or 0))
        if created >= three_months_ago:
            recent_revenue += amount
        elif created >= six_months_ago:
            previous_revenue += amount
    revenue_growth = _percent(recent_revenue - previous_revenue, previous_revenue)

    # Retention
    orders_per_customer = {}
    for order in orders:
        if order.get("user_id"):
            orders_per_customer[order["user_id"]] = orders_per_customer.get(order["user_id"], 0) + 1
    repeat_customers = sum(1 for count in orders_per_customer.values() if count > 1)
    retention_rate = _percent(repeat_customers, len(orders_per_customer))
    conversion_rate = _percent(len(orders_per_customer), len(customers))

    # Monthly trend, keyed by (year, month) so the same month name in
    # different years never collides
    buckets = {}
    for delta in range(-5, 1):
        buckets[_shift_month(now.year, now.month, delta)] = {"sales": Decimal("0"), "orders": 0, "customers": set()}

    category_stats = {}
    product_stats = {}
    for order in paid_orders:
        created = _local(order["created_at"], now)
        bucket = buckets.get((created.year, created.month))
        if bucket is not None:
            bucket["sales"] += Decimal(str(order["total_amount"] or 0))
            bucket["orders"] += 1
            if order.get("user_id"):
                bucket["customers"].add(order["user_id"])

        order_categories = set()
        for item in order.get("items", []):
            line_revenue = Decimal(str(item.get("price") or 0)) * int(item.get("quantity") or 0)
            category = item.get("category") or "Uncategorized"
            stats = category_stats.setdefault(category, {"revenue": Decimal("0"), "orders": 0})
            stats["revenue"] += line_revenue
            order_categories.add(category)

            product_id = str(item.get("product_id") or "unknown")
            product = product_stats.setdefault(
                product_id, {"id": product_id, "name": item.get("name") or "Unknown Product", "sales": 0, "revenue": Decimal("0")}
            )
            product["sales"] += int(item.get("quantity") or 0)
            product["revenue"] += line_revenue

        for category in order_categories:
            category_stats[category]["orders"] += 1

    sales_trend = [
        {
            "month": calendar.month_abbr[month],
            "year": year,
            "sales": float(bucket["sales"]),
            "orders": bucket["orders"],
            "customers": len(bucket["customers"]),
        }
        for (year, month), bucket in buckets.items()
    ]

    category_performance = sorted(
        [
            {
                "name": name,
                "revenue": float(stats["revenue"]),
                "orders": stats["orders"],
                "color": CATEGORY_COLORS.get(name, DEFAULT_COLOR),
            }
            for name, stats in category_stats.items()
        ],
        key=lambda row: row["revenue"],
        reverse=True,
    )

    top_products = [
        {"id": p["id"], "name": p["name"], "sales": p["sales"], "revenue": float(p["revenue"])}
        for p in sorted(product_stats.values(), key=lambda p: p["revenue"], reverse=True)[:5]
    ]

    inventory_alerts = sorted(
        [
            {
                "id": str(p["id"]),
                "name": p["name"],
                "stock": p["stock_quantity"],
                "status": _stock_status(p["stock_quantity"]),
            }
            for p in products
            if p.get("stock_quantity") is not None
        ],
        key=lambda row: row["stock"],
    )[:5]

    return {
        "totalRevenue": float(total_revenue),
        "totalOrders": len(orders),
        "totalCustomers": len(customers),
        "revenueGrowth": f"{revenue_growth:+.1f}%",
        "retentionRate": f"{retention_rate:.1f}%",
        "conversionRate": f"{conversion_rate:.1f}%",
        "salesTrend": sales_trend,
        "categoryPerformance": category_performance,
        "topProducts": top_products,
        "inventoryAlerts": inventory_alerts,
    }
