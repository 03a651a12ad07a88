from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional
import json
import math
import uuid

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..checkout import CartLine, ORDER_NUMBER_PREFIX, compute_totals
from ..db import get_conn
from ..deps import require_terminal
from ..jsonlog import json_log
from ..validation import BranchCode, OrderStatus, PaymentMethod

router = APIRouter(prefix="/api/orders", tags=["orders"])

TOTALS_TOLERANCE = Decimal("0.01")
MAX_PAGE_SIZE = 200


class OrderItemIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)


class OrderIn(BaseModel):
    id: uuid.UUID
    order_number: str = Field(pattern=rf"^{ORDER_NUMBER_PREFIX}\d{{5,}}$")
    items: List[OrderItemIn] = Field(min_length=1)
    subtotal: Decimal
    discount: Decimal = Decimal("0")
    vat: Decimal
    total: Decimal
    senior_discount: bool = False
    staff_id: str = Field(min_length=1, max_length=64)
    branch: BranchCode
    status: OrderStatus = "completed"
    payment_method: Optional[PaymentMethod] = None
    customer_info: Optional[dict] = None
    created_at: Optional[datetime] = None


def _check_totals(data: OrderIn) -> None:
    names = [it.name for it in data.items]
    if len(set(names)) != len(names):
        raise HTTPException(status_code=400, detail="duplicate item name")
    lines = [CartLine(name=it.name, unit_price=it.price, quantity=it.quantity) for it in data.items]
    expected = compute_totals(lines, data.senior_discount).rounded()
    for field in ("subtotal", "discount", "vat", "total"):
        if abs(getattr(expected, field) - getattr(data, field)) > TOTALS_TOLERANCE:
            json_log(
                "warning",
                "orders.totals_mismatch",
                order_number=data.order_number,
                field=field,
                submitted=str(getattr(data, field)),
                expected=str(getattr(expected, field)),
            )
            raise HTTPException(status_code=400, detail="totals mismatch")


def _pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "has_next": page * limit < total,
        "has_prev": page > 1,
    }


@router.post("")
def create_order(data: OrderIn, terminal=Depends(require_terminal)):
    _check_totals(data)
    items_json = json.dumps(
        [{"name": it.name, "price": str(it.price), "quantity": it.quantity} for it in data.items]
    )
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO orders
                  (id, order_number, items, subtotal, discount, vat, total, senior_discount,
                   staff_id, branch, status, payment_method, customer_info, terminal_id, created_at)
                VALUES
                  (%s, %s, %s::jsonb, %s, %s, %s, %s, %s,
                   %s, %s, %s, %s, %s::jsonb, %s, COALESCE(%s, now()))
                ON CONFLICT (order_number) DO NOTHING
                RETURNING id
                """,
                (
                    data.id,
                    data.order_number,
                    items_json,
                    data.subtotal,
                    data.discount,
                    data.vat,
                    data.total,
                    data.senior_discount,
                    data.staff_id,
                    data.branch,
                    data.status,
                    data.payment_method,
                    json.dumps(data.customer_info) if data.customer_info is not None else None,
                    terminal["terminal_id"],
                    data.created_at,
                ),
            )
            row = cur.fetchone()
            if row:
                return {"id": str(row["id"]), "order_number": data.order_number, "duplicate": False}

            # Number already taken: a replay of the same order is fine, anything else is a conflict.
            cur.execute("SELECT id FROM orders WHERE order_number = %s", (data.order_number,))
            existing = cur.fetchone()
            if existing and str(existing["id"]) == str(data.id):
                return {"id": str(data.id), "order_number": data.order_number, "duplicate": True}
            json_log(
                "warning",
                "orders.number_conflict",
                order_number=data.order_number,
                terminal_id=terminal["terminal_id"],
            )
            raise HTTPException(status_code=409, detail="order number conflict")


@router.get("")
def list_orders(
    page: int = 1,
    limit: int = 50,
    branch: Optional[BranchCode] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    if page < 1:
        raise HTTPException(status_code=400, detail="page must be >= 1")
    if limit <= 0 or limit > MAX_PAGE_SIZE:
        raise HTTPException(status_code=400, detail=f"limit must be between 1 and {MAX_PAGE_SIZE}")

    base_sql = "FROM orders WHERE 1=1"
    params: list = []
    if branch:
        base_sql += " AND branch = %s"
        params.append(branch)
    if start_date:
        base_sql += " AND created_at >= %s"
        params.append(start_date)
    if end_date:
        # Inclusive of the whole end day.
        base_sql += " AND created_at < %s"
        params.append(end_date + timedelta(days=1))

    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT COUNT(*)::int AS total {base_sql}", params)
            total = cur.fetchone()["total"]
            cur.execute(
                f"""
                SELECT id, order_number, items, subtotal, discount, vat, total, senior_discount,
                       staff_id, branch, status, payment_method, customer_info, created_at
                {base_sql}
                ORDER BY created_at DESC, order_number DESC
                LIMIT %s OFFSET %s
                """,
                params + [limit, (page - 1) * limit],
            )
            return {"orders": cur.fetchall(), "pagination": _pagination(page, limit, total)}


@router.get("/{order_id}")
def get_order(order_id: uuid.UUID):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, order_number, items, subtotal, discount, vat, total, senior_discount,
                       staff_id, branch, status, payment_method, customer_info, terminal_id,
                       created_at, updated_at
                FROM orders
                WHERE id = %s
                """,
                (order_id,),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="order not found")
            return {"order": row}
