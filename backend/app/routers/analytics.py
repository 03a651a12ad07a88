from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional
import json

from fastapi import APIRouter

from ..checkout import q2
from ..db import get_conn
from ..validation import AnalyticsPeriod, BranchCode

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

PERIOD_DAYS = {"1d": 1, "7d": 7, "30d": 30, "90d": 90}
TOP_PRODUCTS_LIMIT = 10


def _period_start(period: Optional[str], now: Optional[datetime] = None) -> datetime:
    days = PERIOD_DAYS.get((period or "").strip().lower(), PERIOD_DAYS["7d"])
    return (now or datetime.now(timezone.utc)) - timedelta(days=days)


def _order_items(raw) -> list:
    if isinstance(raw, list):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _aggregate_top_products(rows: Iterable[dict], limit: int = TOP_PRODUCTS_LIMIT) -> list[dict]:
    """
    Per-product quantity and revenue from order item snapshots.

    Revenue is price x quantity as rung up (before the senior discount and VAT),
    ordered by revenue then quantity.
    """
    stats: dict[str, dict] = {}
    for row in rows:
        seen_in_order = set()
        for it in _order_items(row.get("items")):
            name = str((it or {}).get("name") or "").strip()
            if not name:
                continue
            try:
                qty = int(it.get("quantity") or 0)
                price = Decimal(str(it.get("price") or 0))
            except (ValueError, ArithmeticError):
                continue
            s = stats.setdefault(name, {"name": name, "quantity": 0, "revenue": Decimal("0"), "order_count": 0})
            s["quantity"] += qty
            s["revenue"] += price * qty
            if name not in seen_in_order:
                s["order_count"] += 1
                seen_in_order.add(name)
    ranked = sorted(stats.values(), key=lambda s: (-s["revenue"], -s["quantity"], s["name"]))
    return [{**s, "revenue": q2(s["revenue"])} for s in ranked[:limit]]


@router.get("/sales")
def sales_by_day(period: AnalyticsPeriod = "7d", branch: Optional[BranchCode] = None):
    sql = """
        SELECT created_at::date AS date,
               COUNT(*)::int AS order_count,
               COALESCE(SUM(total), 0) AS total_sales,
               ROUND(COALESCE(AVG(total), 0), 2) AS avg_order_value
        FROM orders
        WHERE status = 'completed' AND created_at >= %s
    """
    params: list = [_period_start(period)]
    if branch:
        sql += " AND branch = %s"
        params.append(branch)
    sql += " GROUP BY created_at::date ORDER BY date DESC"
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            return {"period": period, "sales": cur.fetchall()}


@router.get("/top-products")
def top_products(period: AnalyticsPeriod = "7d", branch: Optional[BranchCode] = None):
    sql = "SELECT items FROM orders WHERE status = 'completed' AND created_at >= %s"
    params: list = [_period_start(period)]
    if branch:
        sql += " AND branch = %s"
        params.append(branch)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
    return {"period": period, "products": _aggregate_top_products(rows)}
