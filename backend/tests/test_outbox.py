from datetime import datetime, timedelta, timezone

import pytest

from backend.app.checkout import Cart, OrderSequence
from backend.app.outbox import (
    EVENT_ORDER_CREATED,
    EVENT_TIMELOG_CREATED,
    ApiError,
    ApiUnavailable,
    LocalOutbox,
    next_retry_at_for_attempt,
)


class _FakeClient:
    """Answers each post from a scripted list: a dict is a success, an exception is raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.posts = []

    def post_json(self, path, payload):
        self.posts.append((path, payload))
        res = self.responses.pop(0) if self.responses else {"ok": True}
        if isinstance(res, Exception):
            raise res
        return res


@pytest.fixture
def outbox(tmp_path):
    return LocalOutbox(str(tmp_path / "outbox.sqlite"))


def _order(number_start=1000):
    cart = Cart(sequence=OrderSequence(start=number_start))
    cart.add_item("BB Bucket", "128.00")
    return cart.finalize_order("maria.santos", "vito-cruz")


def _later():
    return datetime.now(timezone.utc) + timedelta(hours=1)


def test_enqueue_stores_payload_verbatim(outbox):
    payload = {"a": 1, "nested": {"b": [1, 2]}, "amount": "10.50"}
    eid = outbox.enqueue(EVENT_TIMELOG_CREATED, payload)
    ev = outbox.get(eid)
    assert ev["payload"] == payload
    assert ev["status"] == "pending"
    assert ev["attempts"] == 0
    assert outbox.count_pending() == 1


def test_enqueue_same_id_twice_keeps_one_event(outbox):
    order = _order()
    outbox.enqueue_order(order)
    outbox.enqueue_order(order)
    assert outbox.count_pending() == 1
    assert outbox.get(order.id)["payload"]["order_number"] == "ORD-01001"


def test_enqueue_rejects_unknown_event_type(outbox):
    with pytest.raises(ValueError):
        outbox.enqueue("order.deleted", {})


def test_flush_acks_in_creation_order(outbox):
    first = outbox.enqueue(EVENT_TIMELOG_CREATED, {"n": 1})
    second = outbox.enqueue_order(_order())
    client = _FakeClient({"ok": True}, {"duplicate": True})

    summary = outbox.flush(client)

    assert summary == {"acked": 2, "dead": 0, "retry": 0}
    assert [p for p, _ in client.posts] == ["/api/timelog", "/api/orders"]
    assert outbox.get(first)["status"] == "acked"
    assert outbox.get(second)["status"] == "acked"
    assert outbox.count_pending() == 0


def test_flush_offline_keeps_event_pending_and_stops(outbox):
    a = outbox.enqueue(EVENT_TIMELOG_CREATED, {"n": 1})
    b = outbox.enqueue(EVENT_TIMELOG_CREATED, {"n": 2})
    client = _FakeClient(ApiUnavailable("connection refused"))

    summary = outbox.flush(client)

    assert summary == {"acked": 0, "dead": 0, "retry": 1}
    assert len(client.posts) == 1
    ev = outbox.get(a)
    assert ev["status"] == "pending"
    assert ev["attempts"] == 1
    assert "connection refused" in ev["last_error"]
    assert outbox.get(b)["attempts"] == 0


def test_flush_server_error_backs_off(outbox):
    eid = outbox.enqueue_order(_order())
    outbox.flush(_FakeClient(ApiError(503, "db down")))

    # Not due yet: nothing is posted on an immediate second pass.
    client = _FakeClient()
    assert outbox.flush(client) == {"acked": 0, "dead": 0, "retry": 0}
    assert client.posts == []

    assert outbox.flush(client, now=_later())["acked"] == 1
    assert outbox.get(eid)["status"] == "acked"


def test_flush_conflict_dead_letters_and_continues(outbox):
    bad = outbox.enqueue_order(_order())
    good = outbox.enqueue(EVENT_TIMELOG_CREATED, {"n": 1})
    client = _FakeClient(ApiError(409, "order number conflict"), {"ok": True})

    summary = outbox.flush(client)

    assert summary == {"acked": 1, "dead": 1, "retry": 0}
    dead = outbox.get(bad)
    assert dead["status"] == "dead"
    assert "order number conflict" in dead["last_error"]
    assert outbox.get(good)["status"] == "acked"
    assert [e["event_id"] for e in outbox.list_dead()] == [bad]


def test_flush_auth_failure_is_retried_not_dead_lettered(outbox):
    eid = outbox.enqueue_order(_order())
    outbox.flush(_FakeClient(ApiError(401, "invalid terminal token")))
    assert outbox.get(eid)["status"] == "pending"


def test_requeue_dead_event(outbox):
    eid = outbox.enqueue_order(_order())
    outbox.flush(_FakeClient(ApiError(400, "totals mismatch")))
    assert outbox.requeue(eid) is True
    assert outbox.get(eid)["status"] == "pending"
    assert outbox.requeue(eid) is False


def test_retry_delay_is_capped_and_grows():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    d1 = next_retry_at_for_attempt(1, now=now) - now
    d4 = next_retry_at_for_attempt(4, now=now) - now
    d_big = next_retry_at_for_attempt(40, "evt", now=now) - now
    assert d1 == timedelta(seconds=1)
    assert d4 == timedelta(seconds=8)
    assert d_big <= timedelta(seconds=300)


def test_order_event_type_routes_to_orders(outbox):
    eid = outbox.enqueue_order(_order())
    assert outbox.get(eid)["event_type"] == EVENT_ORDER_CREATED


def test_backing_off_event_is_not_overtaken(outbox):
    outbox.enqueue(EVENT_TIMELOG_CREATED, {"n": 1})
    outbox.enqueue(EVENT_TIMELOG_CREATED, {"n": 2})
    outbox.flush(_FakeClient(ApiError(503, "db down")))

    client = _FakeClient()
    assert outbox.flush(client) == {"acked": 0, "dead": 0, "retry": 0}
    assert client.posts == []
    assert outbox.pending() == []

    outbox.flush(client, now=_later())
    assert [p for _, p in client.posts] == [{"n": 1}, {"n": 2}]
    assert outbox.count_pending() == 0


def test_dead_event_does_not_block_later_ones(outbox):
    outbox.enqueue(EVENT_TIMELOG_CREATED, {"n": 1})
    outbox.enqueue(EVENT_TIMELOG_CREATED, {"n": 2})
    outbox.flush(_FakeClient(ApiError(422, "validation failed"), ApiUnavailable("offline")))

    client = _FakeClient()
    outbox.flush(client, now=_later())
    assert [p for _, p in client.posts] == [{"n": 2}]
