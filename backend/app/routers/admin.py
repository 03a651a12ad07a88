from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends

from ..db import get_conn
from ..deps import require_admin

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/dashboard")
def dashboard():
    # "Today" is the UTC calendar day.
    start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT COUNT(*)::int AS count, COALESCE(SUM(total), 0) AS total
                FROM orders
                WHERE status = 'completed' AND created_at >= %s AND created_at < %s
                """,
                (start, start + timedelta(days=1)),
            )
            orders = cur.fetchone()
            cur.execute("SELECT COUNT(*)::int AS count FROM staff WHERE status = 'active'")
            staff = cur.fetchone()
            cur.execute(
                """
                SELECT COUNT(*)::int AS count
                FROM inventory
                WHERE status = 'active' AND quantity <= min_quantity
                """
            )
            low_stock = cur.fetchone()
    return {
        "total_orders": orders["count"],
        "total_sales": orders["total"],
        "active_staff": staff["count"],
        "low_stock_items": low_stock["count"],
    }
