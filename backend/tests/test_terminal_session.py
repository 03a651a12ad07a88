import pytest

from backend.app.checkout import EmptyCartError, NotAuthenticatedError, OrderSequence
from backend.app.outbox import EVENT_ORDER_CREATED, EVENT_TIMELOG_CREATED, LocalOutbox
from backend.app.terminal import TerminalSession

MARIA = {"staff_id": "maria.santos", "name": "Maria Santos"}


@pytest.fixture
def outbox(tmp_path):
    return LocalOutbox(str(tmp_path / "outbox.sqlite"))


def _queued(outbox):
    return [(e["event_type"], e["payload"]) for e in outbox.pending()]


def test_login_records_time_in(outbox):
    s = TerminalSession("Vito-Cruz", outbox=outbox)
    entry = s.login(MARIA)
    assert s.is_logged_in
    assert entry["type"] == "time_in"
    assert entry["branch"] == "vito-cruz"
    assert _queued(outbox) == [(EVENT_TIMELOG_CREATED, entry)]


def test_logout_records_time_out_and_clears_staff(outbox):
    s = TerminalSession("vito-cruz", outbox=outbox)
    s.login(MARIA)
    entry = s.logout()
    assert entry["type"] == "time_out"
    assert entry["staff_id"] == "maria.santos"
    assert s.staff is None
    assert s.logout() is None
    assert [p["type"] for _, p in _queued(outbox)] == ["time_in", "time_out"]


def test_checkout_requires_login():
    s = TerminalSession("vito-cruz")
    s.cart.add_item("BB Bucket", "128.00")
    with pytest.raises(NotAuthenticatedError):
        s.checkout()
    assert len(s.cart) == 1


def test_checkout_on_empty_cart():
    s = TerminalSession("vito-cruz")
    s.login(MARIA)
    with pytest.raises(EmptyCartError):
        s.checkout()


def test_checkout_queues_order_with_branch_and_staff(outbox):
    s = TerminalSession("vito-cruz", outbox=outbox, sequence=OrderSequence(start=1000))
    s.login(MARIA)
    s.cart.add_item("BB Bucket", "128.00")
    s.change_branch("sterling-makati")

    order = s.checkout()

    assert order.order_number == "ORD-01001"
    assert order.branch == "sterling-makati"
    assert order.staff_id == "maria.santos"
    assert s.cart.is_empty
    orders = [p for t, p in _queued(outbox) if t == EVENT_ORDER_CREATED]
    assert orders == [order.to_payload()]


def test_cancel_clears_cart_and_discount():
    s = TerminalSession("vito-cruz")
    s.cart.add_item("A", "1.00")
    s.cart.set_senior_discount(True)
    s.cancel()
    assert s.cart.is_empty
    assert s.cart.senior_discount is False


def test_change_branch_rejects_blank():
    s = TerminalSession("vito-cruz")
    with pytest.raises(ValueError):
        s.change_branch("  ")
    assert s.branch == "vito-cruz"


def test_switching_staff_times_out_previous(outbox):
    s = TerminalSession("vito-cruz", outbox=outbox)
    s.login(MARIA)
    s.login({"staff_id": "ana.garcia"})
    assert [(p["staff_id"], p["type"]) for _, p in _queued(outbox)] == [
        ("maria.santos", "time_in"),
        ("maria.santos", "time_out"),
        ("ana.garcia", "time_in"),
    ]


def test_time_log_without_login_is_rejected():
    with pytest.raises(NotAuthenticatedError):
        TerminalSession("vito-cruz").time_in()


class _BrokenOutbox:
    def __init__(self, outbox):
        self.outbox = outbox
        self.fail = True

    def enqueue(self, *args, **kwargs):
        return self.outbox.enqueue(*args, **kwargs)

    def enqueue_order(self, order):
        if self.fail:
            raise OSError("disk I/O error")
        return self.outbox.enqueue_order(order)


def test_checkout_keeps_cart_when_queueing_fails(outbox):
    seq = OrderSequence(start=1000)
    broken = _BrokenOutbox(outbox)
    s = TerminalSession("vito-cruz", outbox=broken, sequence=seq)
    s.login(MARIA)
    s.cart.add_item("BB Bucket", "128.00")
    s.cart.set_senior_discount(True)

    with pytest.raises(OSError):
        s.checkout()

    assert s.cart.get("BB Bucket").quantity == 1
    assert s.cart.senior_discount is True
    assert seq.current == 1000
    assert [t for t, _ in _queued(outbox)] == [EVENT_TIMELOG_CREATED]

    # Retrying once the disk recovers reuses the number and queues the sale.
    broken.fail = False
    order = s.checkout()
    assert order.order_number == "ORD-01001"
    assert s.cart.is_empty
    assert [p for t, p in _queued(outbox) if t == EVENT_ORDER_CREATED] == [order.to_payload()]


@pytest.mark.parametrize("bad", ["vito cruz", "", "makati/2", "-leading"])
def test_branch_must_be_a_valid_code(bad):
    with pytest.raises(ValueError):
        TerminalSession(bad)
    s = TerminalSession(" Sterling-Makati ")
    assert s.branch == "sterling-makati"
    with pytest.raises(ValueError):
        s.change_branch(bad)
    assert s.branch == "sterling-makati"
