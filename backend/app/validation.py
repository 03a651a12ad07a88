from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _period_or_default(v):
    # Unknown periods fall back to a week rather than failing the dashboard.
    v = _to_lower_str(v)
    return v if v in {"1d", "7d", "30d", "90d"} else "7d"


# Canonical values mirror the CHECK constraints in `backend/db/migrations/001_init.sql`.
TimeLogType = Annotated[Literal["time_in", "time_out", "break_start", "break_end"], BeforeValidator(_to_lower_str)]
StaffStatus = Annotated[Literal["active", "inactive"], BeforeValidator(_to_lower_str)]
OrderStatus = Annotated[Literal["completed", "voided"], BeforeValidator(_to_lower_str)]
AnalyticsPeriod = Annotated[Literal["1d", "7d", "30d", "90d"], BeforeValidator(_period_or_default)]

# Branch codes are slugs like `vito-cruz`; keep them stable identifiers.
BRANCH_CODE_PATTERN = r"^[a-z0-9][a-z0-9_-]*$"
BRANCH_CODE_MAX_LENGTH = 64

BranchCode = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=BRANCH_CODE_MAX_LENGTH, pattern=BRANCH_CODE_PATTERN),
]


def normalize_branch_code(v) -> str:
    """Same rules as `BranchCode`, for code that runs outside a pydantic model."""
    code = _to_lower_str(v) or ""
    if len(code) > BRANCH_CODE_MAX_LENGTH or not re.fullmatch(BRANCH_CODE_PATTERN, code):
        raise ValueError(f"invalid branch code: {v!r}")
    return code


PaymentMethod = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[a-z0-9][a-z0-9_-]*$"),
]
