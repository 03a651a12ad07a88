from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from .checkout import Cart, NotAuthenticatedError, Order, OrderSequence
from .jsonlog import json_log
from .outbox import EVENT_TIMELOG_CREATED, LocalOutbox
from .validation import normalize_branch_code


TIMELOG_TYPES = ("time_in", "time_out", "break_start", "break_end")


class TerminalSession:
    """
    One cashier terminal: the active branch, who is logged in, the open cart,
    and (optionally) the local outbox that orders and time logs are queued to.
    """

    def __init__(
        self,
        branch: str,
        cart: Optional[Cart] = None,
        outbox: Optional[LocalOutbox] = None,
        sequence: Optional[OrderSequence] = None,
    ):
        self.branch = normalize_branch_code(branch)
        self.cart = cart or Cart(sequence=sequence)
        self.outbox = outbox
        self.staff: Optional[dict] = None

    @property
    def staff_id(self) -> Optional[str]:
        return (self.staff or {}).get("staff_id")

    @property
    def is_logged_in(self) -> bool:
        return bool(self.staff_id)

    def login(self, staff: dict) -> Optional[dict]:
        if not (staff or {}).get("staff_id"):
            raise NotAuthenticatedError("staff_id is required")
        if self.is_logged_in and self.staff_id != staff["staff_id"]:
            self.logout()
        self.staff = dict(staff)
        json_log("info", "terminal.login", staff_id=self.staff_id, branch=self.branch)
        return self.record_time_log("time_in")

    def logout(self) -> Optional[dict]:
        if not self.is_logged_in:
            return None
        entry = self.record_time_log("time_out")
        json_log("info", "terminal.logout", staff_id=self.staff_id, branch=self.branch)
        self.staff = None
        return entry

    def record_time_log(self, log_type: str, notes: Optional[str] = None) -> Optional[dict]:
        if log_type not in TIMELOG_TYPES:
            raise ValueError(f"invalid time log type: {log_type}")
        if not self.is_logged_in:
            raise NotAuthenticatedError()
        entry = {
            "id": str(uuid.uuid4()),
            "staff_id": self.staff_id,
            "branch": self.branch,
            "type": log_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "notes": notes,
        }
        if self.outbox is not None:
            self.outbox.enqueue(EVENT_TIMELOG_CREATED, entry, event_id=entry["id"])
        return entry

    def time_in(self) -> Optional[dict]:
        return self.record_time_log("time_in")

    def time_out(self) -> Optional[dict]:
        return self.record_time_log("time_out")

    def change_branch(self, branch: str) -> None:
        self.branch = normalize_branch_code(branch)

    def cancel(self) -> None:
        self.cart.clear()

    def checkout(self) -> Order:
        # Queue before the cart is cleared: if queueing fails the sale is still on screen to retry.
        handoff = self.outbox.enqueue_order if self.outbox is not None else None
        order = self.cart.finalize_order(self.staff_id, self.branch, handoff=handoff)
        json_log(
            "info",
            "terminal.checkout",
            order_number=order.order_number,
            staff_id=order.staff_id,
            branch=order.branch,
            total=str(order.total),
        )
        return order
