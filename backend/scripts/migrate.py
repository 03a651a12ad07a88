#!/usr/bin/env python3
import argparse
import os
import sys
from pathlib import Path

import psycopg
from psycopg.rows import dict_row

DB_DIR = Path(__file__).resolve().parents[1] / "db"
MIGRATIONS_DIR = DB_DIR / "migrations"
SEEDS_DIR = DB_DIR / "seeds"


def _sql_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.suffix == ".sql")


def _applied(cur) -> set:
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
          name text PRIMARY KEY,
          applied_at timestamptz NOT NULL DEFAULT now()
        )
        """
    )
    cur.execute("SELECT name FROM schema_migrations")
    return {r["name"] for r in cur.fetchall()}


def pending_files(applied: set, include_seeds: bool) -> list[tuple[str, Path]]:
    # Seeds are tracked under a `seeds/` prefix so they never collide with migration names.
    out = [(p.name, p) for p in _sql_files(MIGRATIONS_DIR)]
    if include_seeds:
        out += [(f"seeds/{p.name}", p) for p in _sql_files(SEEDS_DIR)]
    return [(name, p) for name, p in out if name not in applied]


def main() -> int:
    parser = argparse.ArgumentParser(description="Apply SQL migrations (and optionally seed data).")
    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_URL") or "postgresql://localhost/cbtb_pos",
        help="Postgres connection string (defaults to $DATABASE_URL).",
    )
    parser.add_argument("--seed", action="store_true", help="Also apply backend/db/seeds/*.sql.")
    parser.add_argument("--dry-run", action="store_true", help="List pending files without applying them.")
    args = parser.parse_args()

    if not _sql_files(MIGRATIONS_DIR):
        print(f"no migrations found in {MIGRATIONS_DIR}", file=sys.stderr)
        return 2

    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                applied = _applied(cur)
        todo = pending_files(applied, args.seed)
        if args.dry_run:
            for name, _path in todo:
                print(f"pending {name}")
            print(f"{len(todo)} pending")
            return 0
        for name, path in todo:
            # One transaction per file: a failing file leaves earlier ones applied.
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(path.read_text(encoding="utf-8"))
                    cur.execute("INSERT INTO schema_migrations (name) VALUES (%s)", (name,))
            print(f"applied {name}")

    print("OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
