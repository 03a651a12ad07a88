#!/usr/bin/env python3
import argparse
import json
import os
import sys
import urllib.error
import urllib.request


def check(url: str, timeout: float) -> tuple[bool, dict]:
    req = urllib.request.Request(url.rstrip("/") + "/health", method="GET")
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = json.loads(resp.read().decode("utf-8") or "{}")
            return resp.status == 200 and body.get("status") == "ok", body
    except urllib.error.HTTPError as ex:
        raw = ex.read().decode("utf-8", errors="replace") if ex.fp else ""
        try:
            body = json.loads(raw)
        except ValueError:
            body = {"error": raw or str(ex)}
        return False, body
    except (urllib.error.URLError, TimeoutError, ValueError) as ex:
        return False, {"error": str(ex)}


def main() -> int:
    parser = argparse.ArgumentParser(description="Check the API /health endpoint.")
    parser.add_argument("--url", default=os.getenv("POS_API_BASE_URL") or "http://localhost:8000")
    parser.add_argument("--timeout", type=float, default=5.0)
    args = parser.parse_args()

    ok, body = check(args.url, args.timeout)
    print(json.dumps({"ok": ok, **body}, default=str))
    if not ok:
        print(f"health check failed: {args.url}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
