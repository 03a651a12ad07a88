"""
Terminal-side offline queue.

Finalized orders and time logs are written to a local SQLite outbox first and
submitted to the API by `flush()`. Delivery is at-least-once: an event stays
`pending` until the API accepts it (or reports it as an idempotent duplicate),
and a failed pass stops at the first unreachable event. Later events wait
behind it until its backoff expires, so submission order is preserved.
Payloads are stored and re-sent verbatim.
"""
from __future__ import annotations

import hashlib
import json
import sqlite3
import urllib.error
import urllib.request
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

from .checkout import Order
from .jsonlog import json_log


EVENT_ORDER_CREATED = "order.created"
EVENT_TIMELOG_CREATED = "timelog.created"

EVENT_PATHS = {
    EVENT_ORDER_CREATED: "/api/orders",
    EVENT_TIMELOG_CREATED: "/api/timelog",
}

# Statuses worth retrying later instead of dead-lettering the event.
RETRYABLE_STATUS = {401, 403, 408, 425, 429}

MAX_RETRY_DELAY_SECONDS = 300

SCHEMA = """
CREATE TABLE IF NOT EXISTS pos_outbox_events (
  event_id TEXT PRIMARY KEY,
  event_type TEXT NOT NULL,
  payload_json TEXT NOT NULL,
  created_at TEXT NOT NULL,
  status TEXT NOT NULL DEFAULT 'pending',
  attempts INTEGER NOT NULL DEFAULT 0,
  last_error TEXT,
  next_attempt_at TEXT,
  acked_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_pos_outbox_events_status ON pos_outbox_events(status, created_at);
"""


class ApiUnavailable(Exception):
    pass


class ApiError(Exception):
    def __init__(self, status: int, detail: str):
        super().__init__(f"{status}: {detail}")
        self.status = status
        self.detail = detail


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    # Fixed width so stored timestamps compare correctly as text.
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def next_retry_at_for_attempt(attempt_count: int, event_id: Optional[str] = None, now: Optional[datetime] = None) -> datetime:
    delay_seconds = min(MAX_RETRY_DELAY_SECONDS, 2 ** max(attempt_count - 1, 0))
    if event_id:
        # Deterministic per-event jitter so terminals coming back online don't retry in lockstep.
        digest = hashlib.sha1(f"{event_id}:{attempt_count}".encode("utf-8")).hexdigest()
        jitter_window = max(1, min(30, delay_seconds // 5 or 1))
        delay_seconds = min(MAX_RETRY_DELAY_SECONDS, delay_seconds + (int(digest[:8], 16) % (jitter_window + 1)))
    return (now or _utcnow()) + timedelta(seconds=delay_seconds)


class ApiClient:
    def __init__(self, base_url: str, terminal_id: str = "", terminal_token: str = "", timeout: float = 10.0):
        self.base_url = (base_url or "").rstrip("/")
        self.terminal_id = terminal_id
        self.terminal_token = terminal_token
        self.timeout = timeout

    def headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "X-Terminal-Id": self.terminal_id or "",
            "X-Terminal-Token": self.terminal_token or "",
        }

    def _send(self, req: urllib.request.Request) -> dict:
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode("utf-8") if resp else ""
        except urllib.error.HTTPError as ex:
            raw = ex.read().decode("utf-8", errors="replace") if ex.fp else ""
            detail = raw
            try:
                parsed = json.loads(raw)
                if isinstance(parsed, dict) and parsed.get("detail"):
                    detail = str(parsed["detail"])
            except ValueError:
                pass
            raise ApiError(ex.code, detail or ex.reason)
        except (urllib.error.URLError, TimeoutError, ConnectionError) as ex:
            raise ApiUnavailable(str(ex))
        if not body:
            return {}
        try:
            return json.loads(body)
        except ValueError:
            return {"raw": body}

    def post_json(self, path: str, payload: dict) -> dict:
        data = json.dumps(payload, default=str).encode("utf-8")
        req = urllib.request.Request(f"{self.base_url}{path}", data=data, headers=self.headers(), method="POST")
        return self._send(req)


class LocalOutbox:
    def __init__(self, path: str):
        self.path = path
        self.init_db()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    def enqueue(self, event_type: str, payload: dict, event_id: Optional[str] = None) -> str:
        if event_type not in EVENT_PATHS:
            raise ValueError(f"unknown event type: {event_type}")
        event_id = event_id or str(uuid.uuid4())
        now = _iso(_utcnow())
        with self._connect() as conn:
            # Re-queueing the same event id is a no-op so callers can retry enqueue safely.
            conn.execute(
                """
                INSERT OR IGNORE INTO pos_outbox_events
                  (event_id, event_type, payload_json, created_at, status, next_attempt_at)
                VALUES (?, ?, ?, ?, 'pending', ?)
                """,
                (event_id, event_type, json.dumps(payload, default=str), now, now),
            )
        return event_id

    def enqueue_order(self, order: Order) -> str:
        return self.enqueue(EVENT_ORDER_CREATED, order.to_payload(), event_id=order.id)

    def get(self, event_id: str) -> Optional[dict]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM pos_outbox_events WHERE event_id = ?", (event_id,)).fetchone()
            return self._row(row) if row else None

    def pending(self, limit: int = 100, now: Optional[datetime] = None) -> list[dict]:
        """
        Due events in submission order. Stops at the first event still backing
        off so later events never overtake it.
        """
        due = _iso(now or _utcnow())
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM pos_outbox_events
                WHERE status = 'pending'
                ORDER BY created_at, rowid
                LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
        out = []
        for r in rows:
            if r["next_attempt_at"] and r["next_attempt_at"] > due:
                break
            out.append(self._row(r))
        return out

    def count_pending(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(1) AS n FROM pos_outbox_events WHERE status = 'pending'").fetchone()
            return int(row["n"] if row else 0)

    def list_dead(self) -> list[dict]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM pos_outbox_events WHERE status = 'dead' ORDER BY created_at, rowid"
            ).fetchall()
            return [self._row(r) for r in rows]

    def mark_acked(self, event_ids) -> None:
        now = _iso(_utcnow())
        with self._connect() as conn:
            for eid in event_ids:
                conn.execute(
                    "UPDATE pos_outbox_events SET status = 'acked', acked_at = ?, last_error = NULL WHERE event_id = ?",
                    (now, eid),
                )

    def mark_dead(self, event_id: str, error: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE pos_outbox_events
                SET status = 'dead', attempts = attempts + 1, last_error = ?
                WHERE event_id = ?
                """,
                (error, event_id),
            )

    def mark_retry(self, event_id: str, error: str, now: Optional[datetime] = None) -> None:
        with self._connect() as conn:
            row = conn.execute("SELECT attempts FROM pos_outbox_events WHERE event_id = ?", (event_id,)).fetchone()
            attempts = int(row["attempts"] if row else 0) + 1
            conn.execute(
                """
                UPDATE pos_outbox_events
                SET attempts = ?, last_error = ?, next_attempt_at = ?
                WHERE event_id = ?
                """,
                (attempts, error, _iso(next_retry_at_for_attempt(attempts, event_id, now=now)), event_id),
            )

    def requeue(self, event_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE pos_outbox_events
                SET status = 'pending', next_attempt_at = ?, last_error = NULL
                WHERE event_id = ? AND status = 'dead'
                """,
                (_iso(_utcnow()), event_id),
            )
            return cur.rowcount > 0

    def flush(self, client: ApiClient, limit: int = 100, now: Optional[datetime] = None) -> dict:
        summary = {"acked": 0, "dead": 0, "retry": 0}
        for ev in self.pending(limit=limit, now=now):
            event_id = ev["event_id"]
            path = EVENT_PATHS.get(ev["event_type"])
            if not path:
                self.mark_dead(event_id, f"unknown event type: {ev['event_type']}")
                summary["dead"] += 1
                continue
            try:
                client.post_json(path, ev["payload"])
            except ApiUnavailable as ex:
                self.mark_retry(event_id, str(ex), now=now)
                summary["retry"] += 1
                json_log("warning", "outbox.flush.offline", event_id=event_id, error=str(ex))
                break
            except ApiError as ex:
                if ex.status >= 500 or ex.status in RETRYABLE_STATUS:
                    self.mark_retry(event_id, str(ex), now=now)
                    summary["retry"] += 1
                    json_log("warning", "outbox.flush.retry", event_id=event_id, status=ex.status, error=ex.detail)
                    break
                # Rejected for good (validation, order number conflict): park it for an operator.
                self.mark_dead(event_id, str(ex))
                summary["dead"] += 1
                json_log("error", "outbox.flush.rejected", event_id=event_id, status=ex.status, error=ex.detail)
                continue
            self.mark_acked([event_id])
            summary["acked"] += 1
        return summary

    @staticmethod
    def _row(row: sqlite3.Row) -> dict:
        out = dict(row)
        out["payload"] = json.loads(out.pop("payload_json") or "{}")
        return out
