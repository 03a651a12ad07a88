#!/usr/bin/env python3
import argparse
import os
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.security import hash_pin


def main() -> int:
    parser = argparse.ArgumentParser(description="Set (or reset) a staff member's terminal PIN.")
    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_URL") or "postgresql://localhost/cbtb_pos",
        help="Postgres connection string (defaults to $DATABASE_URL).",
    )
    parser.add_argument("--staff-id", required=True)
    parser.add_argument("--pin", required=True)
    args = parser.parse_args()

    staff_id = (args.staff_id or "").strip()
    pin = (args.pin or "").strip()
    if not staff_id:
        print("staff id is required", file=sys.stderr)
        return 2
    if not pin.isdigit() or not 4 <= len(pin) <= 12:
        print("pin must be 4 to 12 digits", file=sys.stderr)
        return 2

    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE staff
                    SET pin_hash = %s,
                        updated_at = now()
                    WHERE staff_id = %s
                    RETURNING id
                    """,
                    (hash_pin(pin), staff_id),
                )
                if not cur.fetchone():
                    print(f"staff not found: {staff_id}", file=sys.stderr)
                    return 2

    print("OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
