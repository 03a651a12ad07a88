from typing import Optional
import uuid

from fastapi import Header, HTTPException

from .config import settings
from .db import get_conn
from .jsonlog import json_log
from .security import verify_admin_token, verify_terminal_token


def _extract_bearer(authorization: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    raise HTTPException(status_code=401, detail="missing token")


def require_terminal(
    terminal_id: uuid.UUID = Header(..., alias="X-Terminal-Id"),
    terminal_token: str = Header(..., alias="X-Terminal-Token"),
):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, branch, token_hash, is_active
                FROM pos_terminals
                WHERE id = %s
                """,
                (terminal_id,),
            )
            row = cur.fetchone()
            if not row or not row["is_active"] or not verify_terminal_token(terminal_token, row["token_hash"]):
                raise HTTPException(status_code=401, detail="invalid terminal token")
            cur.execute("UPDATE pos_terminals SET last_seen_at = now() WHERE id = %s", (terminal_id,))
            return {"terminal_id": str(row["id"]), "branch": row["branch"]}


def require_admin(authorization: Optional[str] = Header(None)):
    if not settings.admin_token:
        json_log("warning", "auth.admin_token_unset")
        raise HTTPException(status_code=503, detail="admin access is not configured")
    token = _extract_bearer(authorization)
    if not verify_admin_token(token, settings.admin_token):
        raise HTTPException(status_code=401, detail="invalid token")
    return True
