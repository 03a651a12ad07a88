"""
Terminal checkout: cart state, senior/PWD discount, VAT and order numbering.

All money is `Decimal`. Totals are exact until `OrderTotals.rounded()` quantizes
the final fields once, which is what gets stored on the `Order`.
"""
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Callable, Iterable, Optional

from .jsonlog import json_log


VAT_RATE = Decimal("0.12")
SENIOR_DISCOUNT_RATE = Decimal("0.20")
ORDER_NUMBER_PREFIX = "ORD-"
ORDER_NUMBER_DIGITS = 5
ORDER_SEQUENCE_START = 1000
ORDER_STATUS_COMPLETED = "completed"
CENTS = Decimal("0.01")


class CheckoutError(Exception):
    status_code = 400
    code = "checkout_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(CheckoutError, ValueError):
    code = "invalid_input"


class EmptyCartError(CheckoutError):
    code = "empty_cart"

    def __init__(self, message: str = "cart is empty"):
        super().__init__(message)


class NotAuthenticatedError(CheckoutError):
    status_code = 401
    code = "not_authenticated"

    def __init__(self, message: str = "please login first"):
        super().__init__(message)


def q2(v: Decimal) -> Decimal:
    return v.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_money(value, field_name: str = "price") -> Decimal:
    # bool is an int subclass; a checkbox value must never become a price.
    if value is None or isinstance(value, bool):
        raise InvalidInput(f"{field_name} is required")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidInput(f"invalid {field_name}: {value!r}")
    if not amount.is_finite():
        raise InvalidInput(f"{field_name} must be finite")
    if amount < 0:
        raise InvalidInput(f"{field_name} must be >= 0")
    return amount


def _require_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidInput("item name is required")
    return name


@dataclass
class CartLine:
    name: str
    unit_price: Decimal
    quantity: int = 1

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict:
        return {"name": self.name, "price": str(self.unit_price), "quantity": self.quantity}


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount: Decimal
    discounted_subtotal: Decimal
    vat: Decimal
    total: Decimal
    senior_discount: bool = False

    def rounded(self) -> "OrderTotals":
        return OrderTotals(
            subtotal=q2(self.subtotal),
            discount=q2(self.discount),
            discounted_subtotal=q2(self.discounted_subtotal),
            vat=q2(self.vat),
            total=q2(self.total),
            senior_discount=self.senior_discount,
        )

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "discount": str(self.discount),
            "discounted_subtotal": str(self.discounted_subtotal),
            "vat": str(self.vat),
            "total": str(self.total),
            "senior_discount": self.senior_discount,
        }


def compute_totals(
    lines: Iterable[CartLine],
    senior_discount: bool = False,
    vat_rate: Decimal = VAT_RATE,
    discount_rate: Decimal = SENIOR_DISCOUNT_RATE,
) -> OrderTotals:
    # Discount comes off the subtotal before VAT (senior citizen / PWD rule).
    subtotal = sum((ln.line_total for ln in lines), Decimal("0"))
    discount = subtotal * discount_rate if senior_discount else Decimal("0")
    discounted_subtotal = subtotal - discount
    vat = discounted_subtotal * vat_rate
    return OrderTotals(
        subtotal=subtotal,
        discount=discount,
        discounted_subtotal=discounted_subtotal,
        vat=vat,
        total=discounted_subtotal + vat,
        senior_discount=bool(senior_discount),
    )


class OrderSequence:
    """
    Process-local order counter. Owned by whoever builds the carts so several
    carts in one process share it; uniqueness across processes is the job of
    the `orders.order_number` unique constraint.
    """

    def __init__(self, start: int = ORDER_SEQUENCE_START, prefix: str = ORDER_NUMBER_PREFIX, digits: int = ORDER_NUMBER_DIGITS):
        self._value = int(start)
        self._lock = threading.Lock()
        self.prefix = prefix
        self.digits = digits

    @property
    def current(self) -> int:
        return self._value

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def release(self, n: int) -> bool:
        """Give back `n` if nothing was taken after it (a finalize that failed downstream)."""
        with self._lock:
            if self._value != n:
                return False
            self._value -= 1
            return True

    def format(self, n: int) -> str:
        return f"{self.prefix}{str(n).zfill(self.digits)}"

    def next_order_number(self) -> str:
        return self.format(self.next())


@dataclass(frozen=True)
class Order:
    order_number: str
    items: tuple
    subtotal: Decimal
    discount: Decimal
    vat: Decimal
    total: Decimal
    staff_id: str
    branch: Optional[str]
    senior_discount: bool = False
    status: str = ORDER_STATUS_COMPLETED
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_payload(self) -> dict:
        # Wire shape accepted by POST /api/orders; amounts as strings so nothing goes through float.
        return {
            "id": self.id,
            "order_number": self.order_number,
            "items": [ln.to_dict() for ln in self.items],
            "subtotal": str(self.subtotal),
            "discount": str(self.discount),
            "vat": str(self.vat),
            "total": str(self.total),
            "senior_discount": self.senior_discount,
            "staff_id": self.staff_id,
            "branch": self.branch,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }


CartListener = Callable[["Cart"], None]


class Cart:
    def __init__(
        self,
        sequence: Optional[OrderSequence] = None,
        vat_rate: Decimal = VAT_RATE,
        discount_rate: Decimal = SENIOR_DISCOUNT_RATE,
    ):
        self.sequence = sequence or OrderSequence()
        self.vat_rate = vat_rate
        self.discount_rate = discount_rate
        self._lines: list[CartLine] = []
        self._senior_discount = False
        self._listeners: list[CartListener] = []

    @property
    def lines(self) -> tuple:
        return tuple(CartLine(ln.name, ln.unit_price, ln.quantity) for ln in self._lines)

    @property
    def senior_discount(self) -> bool:
        return self._senior_discount

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def get(self, name: str) -> Optional[CartLine]:
        for ln in self._lines:
            if ln.name == name:
                return CartLine(ln.name, ln.unit_price, ln.quantity)
        return None

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _find(self, name: str) -> Optional[CartLine]:
        return next((ln for ln in self._lines if ln.name == name), None)

    def add_item(self, name: str, unit_price) -> CartLine:
        name = _require_name(name)
        price = to_money(unit_price)
        line = self._find(name)
        if line:
            line.quantity += 1
        else:
            line = CartLine(name=name, unit_price=price, quantity=1)
            self._lines.append(line)
        self._notify()
        return CartLine(line.name, line.unit_price, line.quantity)

    def change_quantity(self, name: str, delta: int) -> None:
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise InvalidInput(f"invalid quantity change: {delta!r}")
        line = self._find(name)
        if not line:
            return
        line.quantity += delta
        if line.quantity <= 0:
            self._lines = [ln for ln in self._lines if ln.name != name]
        self._notify()

    def clear(self) -> None:
        self._lines = []
        self._senior_discount = False
        self._notify()

    def set_senior_discount(self, enabled: bool) -> None:
        self._senior_discount = bool(enabled)
        self._notify()

    def compute_totals(self) -> OrderTotals:
        return compute_totals(self._lines, self._senior_discount, self.vat_rate, self.discount_rate)

    def finalize_order(
        self,
        staff_id: Optional[str],
        branch: Optional[str],
        handoff: Optional[Callable[[Order], object]] = None,
    ) -> Order:
        """
        Build the order and clear the cart.

        `handoff` (e.g. queueing the order for sync) runs before the cart is
        cleared; if it raises, the cart and the order counter are left as they
        were and the error propagates.
        """
        if self.is_empty:
            raise EmptyCartError()
        if not (staff_id or "").strip():
            raise NotAuthenticatedError()

        n = self.sequence.next()
        try:
            totals = self.compute_totals().rounded()
            order = Order(
                order_number=self.sequence.format(n),
                items=self.lines,
                subtotal=totals.subtotal,
                discount=totals.discount,
                vat=totals.vat,
                total=totals.total,
                staff_id=staff_id,
                branch=branch,
                senior_discount=totals.senior_discount,
            )
            if handoff is not None:
                handoff(order)
        except Exception:
            self.sequence.release(n)
            raise

        self._lines = []
        self._senior_discount = False
        try:
            self._notify()
        except Exception as ex:
            # Order is already handed off; listener errors are logged, not raised.
            json_log("error", "cart.listener_failed", order_number=order.order_number, error=str(ex))
        return order
