#!/usr/bin/env python3
"""
Push the terminal's queued orders and time logs to the API.

Runs beside the cashier UI: each pass flushes due `pending` events from the
local SQLite outbox, then sleeps. `--once` runs a single pass (cron / tests).
"""
import argparse
import sys
import time
import traceback

from backend.app.config import TerminalSettings
from backend.app.jsonlog import json_log
from backend.app.outbox import ApiClient, LocalOutbox


def run_pass(outbox: LocalOutbox, client: ApiClient, limit: int) -> dict:
    summary = outbox.flush(client, limit=limit)
    summary["pending"] = outbox.count_pending()
    if summary["acked"] or summary["dead"] or summary["retry"]:
        json_log("info", "outbox_sync.pass", **summary)
    return summary


def main() -> int:
    cfg = TerminalSettings()
    parser = argparse.ArgumentParser(description="Flush the local POS outbox to the API.")
    parser.add_argument("--outbox", default=cfg.outbox_path, help="SQLite outbox path (defaults to $POS_OUTBOX_PATH).")
    parser.add_argument("--api", default=cfg.api_base_url, help="API base URL (defaults to $POS_API_BASE_URL).")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--sleep", type=float, default=5.0, help="Seconds to sleep between passes")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()

    if not cfg.terminal_id or not cfg.terminal_token:
        print("POS_TERMINAL_ID and POS_TERMINAL_TOKEN are required", file=sys.stderr)
        return 2

    outbox = LocalOutbox(args.outbox)
    client = ApiClient(args.api, cfg.terminal_id, cfg.terminal_token, timeout=cfg.http_timeout)

    while True:
        try:
            run_pass(outbox, client, args.limit)
        except Exception as ex:
            # Never crash the sync loop; the events stay queued for the next pass.
            json_log("error", "outbox_sync.error", error=str(ex))
            traceback.print_exc(file=sys.stderr)
        if args.once:
            return 0
        time.sleep(args.sleep)


if __name__ == "__main__":
    raise SystemExit(main())
