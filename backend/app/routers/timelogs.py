from datetime import date, datetime, timedelta
from typing import Optional
import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..db import get_conn
from ..deps import require_terminal
from ..validation import BranchCode, TimeLogType

router = APIRouter(prefix="/api/timelog", tags=["timelog"])


class TimeLogIn(BaseModel):
    id: Optional[uuid.UUID] = None
    staff_id: str = Field(min_length=1, max_length=64)
    type: TimeLogType
    timestamp: datetime
    branch: BranchCode
    notes: Optional[str] = Field(default=None, max_length=500)


@router.post("")
def create_time_log(data: TimeLogIn, terminal=Depends(require_terminal)):
    log_id = data.id or uuid.uuid4()
    with get_conn() as conn:
        with conn.cursor() as cur:
            # Terminals replay queued time logs; the client id makes that idempotent.
            cur.execute(
                """
                INSERT INTO time_logs (id, staff_id, type, timestamp, branch, notes, terminal_id)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO NOTHING
                RETURNING id
                """,
                (log_id, data.staff_id, data.type, data.timestamp, data.branch, data.notes, terminal["terminal_id"]),
            )
            row = cur.fetchone()
            return {"id": str(log_id), "duplicate": row is None}


@router.get("/{staff_id}")
def list_time_logs(staff_id: str, day: Optional[date] = Query(None, alias="date")):
    sql = """
        SELECT id, staff_id, type, timestamp, branch, notes, created_at
        FROM time_logs
        WHERE staff_id = %s
    """
    params: list = [staff_id]
    if day:
        sql += " AND timestamp >= %s AND timestamp < %s"
        params.extend([day, day + timedelta(days=1)])
    sql += " ORDER BY timestamp DESC"
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            return {"time_logs": cur.fetchall()}
