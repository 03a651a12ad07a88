#!/usr/bin/env python3
import argparse
import os
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.security import hash_terminal_token, new_terminal_token
from backend.app.validation import normalize_branch_code


def main() -> int:
    parser = argparse.ArgumentParser(description="Register a POS terminal and print its credentials once.")
    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_URL") or "postgresql://localhost/cbtb_pos",
        help="Postgres connection string (defaults to $DATABASE_URL).",
    )
    parser.add_argument("--branch", required=True, help="Branch code, e.g. vito-cruz.")
    parser.add_argument("--label", default=None, help="Optional human label (counter name).")
    args = parser.parse_args()

    try:
        branch = normalize_branch_code(args.branch)
    except ValueError as ex:
        print(str(ex), file=sys.stderr)
        return 2

    token = new_terminal_token()
    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT 1 FROM branches WHERE code = %s", (branch,))
                if not cur.fetchone():
                    print(f"branch not found: {branch}", file=sys.stderr)
                    return 2
                cur.execute(
                    """
                    INSERT INTO pos_terminals (id, branch, label, token_hash)
                    VALUES (gen_random_uuid(), %s, %s, %s)
                    RETURNING id
                    """,
                    (branch, args.label, hash_terminal_token(token)),
                )
                terminal_id = cur.fetchone()["id"]

    # Only the hash is stored; this is the only time the token is shown.
    print(f"POS_TERMINAL_ID={terminal_id}")
    print(f"POS_TERMINAL_TOKEN={token}")
    print(f"POS_BRANCH={branch}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
