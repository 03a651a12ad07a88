from typing import Optional

from fastapi import APIRouter

from ..db import get_conn
from ..validation import BranchCode

router = APIRouter(prefix="/api/inventory", tags=["inventory"])


def _flag_low_stock(row: dict) -> dict:
    out = dict(row)
    out["is_low_stock"] = int(row.get("quantity") or 0) <= int(row.get("min_quantity") or 0)
    return out


@router.get("")
def list_inventory(branch: Optional[BranchCode] = None, low_stock: bool = False):
    sql = """
        SELECT id, name, category, quantity, min_quantity, unit, price, cost,
               branch, expiry_date, status, updated_at
        FROM inventory
        WHERE status = 'active'
    """
    params: list = []
    if branch:
        sql += " AND branch = %s"
        params.append(branch)
    if low_stock:
        sql += " AND quantity <= min_quantity"
    sql += " ORDER BY name"
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            return {"inventory": [_flag_low_stock(r) for r in cur.fetchall()]}
