from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..db import get_conn
from ..deps import require_admin, require_terminal
from ..jsonlog import json_log
from ..security import hash_pin, verify_pin
from ..validation import BranchCode, StaffStatus

router = APIRouter(prefix="/api/staff", tags=["staff"])

STAFF_COLUMNS = "id, staff_id, name, position, branch, email, phone, status, created_at, updated_at"


class StaffIn(BaseModel):
    staff_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    position: str = Field(min_length=1, max_length=100)
    branch: BranchCode
    email: str = Field(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: Optional[str] = Field(default=None, max_length=32)
    status: StaffStatus = "active"
    pin: Optional[str] = Field(default=None, min_length=4, max_length=12, pattern=r"^\d+$")


class StaffVerifyIn(BaseModel):
    staff_id: str = Field(min_length=1, max_length=64)
    pin: str = Field(min_length=1, max_length=12)


@router.post("", dependencies=[Depends(require_admin)])
def create_staff(data: StaffIn):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO staff (id, staff_id, name, position, branch, email, phone, status, pin_hash)
                VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {STAFF_COLUMNS}
                """,
                (
                    data.staff_id.strip(),
                    data.name.strip(),
                    data.position.strip(),
                    data.branch,
                    data.email.strip().lower(),
                    data.phone,
                    data.status,
                    hash_pin(data.pin) if data.pin else None,
                ),
            )
            return {"staff": cur.fetchone()}


@router.get("")
def list_staff(branch: Optional[BranchCode] = None, status: Optional[StaffStatus] = None):
    sql = f"SELECT {STAFF_COLUMNS} FROM staff WHERE 1=1"
    params: list = []
    if branch:
        sql += " AND branch = %s"
        params.append(branch)
    if status:
        sql += " AND status = %s"
        params.append(status)
    sql += " ORDER BY name"
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            return {"staff": cur.fetchall()}


@router.post("/verify")
def verify_staff_pin(data: StaffVerifyIn, terminal=Depends(require_terminal)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT staff_id, name, position, branch, status, pin_hash
                FROM staff
                WHERE staff_id = %s
                """,
                (data.staff_id.strip(),),
            )
            row = cur.fetchone()
    # Same answer for unknown staff and a wrong PIN.
    if not row or row["status"] != "active" or not verify_pin(data.pin, row["pin_hash"]):
        json_log("warning", "staff.verify_failed", staff_id=data.staff_id, terminal_id=terminal["terminal_id"])
        raise HTTPException(status_code=401, detail="invalid staff id or pin")
    return {
        "staff_id": row["staff_id"],
        "name": row["name"],
        "position": row["position"],
        "branch": row["branch"],
    }


@router.get("/{staff_id}")
def get_staff(staff_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {STAFF_COLUMNS} FROM staff WHERE staff_id = %s", (staff_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="staff not found")
            return {"staff": row}
