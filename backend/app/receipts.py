from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from .checkout import Cart, Order, VAT_RATE, q2


CURRENCY_SYMBOL = "₱"
COMPANY_NAME = "CBTB POS"
RECEIPT_FOOTER = "Thank you for your purchase!"
RECEIPT_RULE = "=" * 20

BRANCH_NAMES = {
    "vito-cruz": "Vito Cruz Taft",
    "sterling-makati": "Sterling Makati",
}


def format_currency(amount, symbol: str = CURRENCY_SYMBOL) -> str:
    value = q2(Decimal(str(amount or 0)))
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


def branch_display_name(code: Optional[str]) -> str:
    key = (code or "").strip().lower()
    return BRANCH_NAMES.get(key) or (code or "")


def cart_summary(cart: Cart) -> dict:
    """Display rows + formatted totals; meant to be re-rendered after every cart change."""
    totals = cart.compute_totals()
    rows = [
        {
            "name": ln.name,
            "quantity": ln.quantity,
            "unit_price": format_currency(ln.unit_price),
            "line_total": format_currency(ln.line_total),
        }
        for ln in cart.lines
    ]
    return {
        "rows": rows,
        "is_empty": cart.is_empty,
        "senior_discount": totals.senior_discount,
        "subtotal": format_currency(totals.subtotal),
        "discount": format_currency(totals.discount),
        "vat": format_currency(totals.vat),
        "total": format_currency(totals.total),
    }


def render_receipt(
    order: Order,
    staff_name: Optional[str] = None,
    printed_at: Optional[datetime] = None,
    company_name: str = COMPANY_NAME,
    footer: str = RECEIPT_FOOTER,
) -> str:
    at = printed_at or order.created_at
    vat_pct = int(VAT_RATE * 100)
    out = [
        company_name,
        RECEIPT_RULE,
        f"Order: {order.order_number}",
        f"Date: {at.strftime('%Y-%m-%d')}",
        f"Time: {at.strftime('%H:%M:%S')}",
        f"Cashier: {staff_name or order.staff_id}",
        f"Branch: {branch_display_name(order.branch)}",
        RECEIPT_RULE,
    ]
    for ln in order.items:
        out.append(ln.name)
        out.append(f"  {ln.quantity} × {format_currency(ln.unit_price)} = {format_currency(ln.line_total)}")
    out.append(RECEIPT_RULE)
    out.append(f"Subtotal: {format_currency(order.subtotal)}")
    if order.senior_discount:
        out.append(f"Senior/PWD Discount: -{format_currency(order.discount)}")
    out.append(f"VAT ({vat_pct}%): {format_currency(order.vat)}")
    out.append(f"Total: {format_currency(order.total)}")
    out.append(RECEIPT_RULE)
    out.append(footer)
    return "\n".join(out)
