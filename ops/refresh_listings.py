from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any
import urllib.request
import urllib.error


DEFAULT_BASE_URL = os.getenv("AGGREGATOR_BASE_URL", "http://localhost:8000")
DEFAULT_ADMIN_KEY = os.getenv("INTERNAL_ADMIN_KEY", "")

DEFAULT_TIMEOUT_SECONDS = 120


def http_call(method: str, url: str, admin_key: str) -> dict[str, Any]:
    req = urllib.request.Request(
        url=url,
        method=method,
        headers={
            "Accept": "application/json",
            "X-Internal-Admin-Key": admin_key,
        },
    )
    try:
        with urllib.request.urlopen(req, timeout=DEFAULT_TIMEOUT_SECONDS) as resp:
            raw = resp.read().decode("utf-8")
            return json.loads(raw) if raw else {}
    except urllib.error.HTTPError as e:
        body = ""
        try:
            body = e.read().decode("utf-8")
        except Exception:
            body = ""
        print(f"HTTP {e.code} {e.reason} for {url}", file=sys.stderr)
        if body:
            print(body, file=sys.stderr)
        return {"error": {"status": e.code, "reason": e.reason, "body": body}}
    except urllib.error.URLError as e:
        print(f"Network error for {url}: {e}", file=sys.stderr)
        return {"error": {"reason": str(e)}}


def main() -> int:
    p = argparse.ArgumentParser(description="Trigger a listing refresh, show store stats, or purge a source.")
    p.add_argument("action", choices=["refresh", "stats", "purge"])
    p.add_argument("--source", help="required for purge (e.g. zillow_com1)")
    p.add_argument("--base-url", default=DEFAULT_BASE_URL)
    p.add_argument("--admin-key", default=DEFAULT_ADMIN_KEY)
    p.add_argument("--yes", action="store_true", help="required for purge (safety)")
    args = p.parse_args()

    if not args.admin_key:
        print("Missing INTERNAL_ADMIN_KEY (env) or --admin-key", file=sys.stderr)
        return 2

    base_url = args.base_url.rstrip("/")

    if args.action == "refresh":
        resp = http_call("POST", f"{base_url}/v1/admin/listings/refresh", args.admin_key)
    elif args.action == "stats":
        resp = http_call("GET", f"{base_url}/v1/admin/listings/stats", args.admin_key)
    else:
        if not args.source:
            print("purge requires --source", file=sys.stderr)
            return 2
        if not args.yes:
            print("Refusing to purge without --yes (safety).", file=sys.stderr)
            return 2
        resp = http_call("DELETE", f"{base_url}/v1/admin/sources/{args.source}/listings", args.admin_key)

    print(json.dumps(resp, indent=2, ensure_ascii=False))
    if "error" in resp:
        return 1
    # a refresh that reached the service but failed for some sources still exits non-zero
    if args.action == "refresh" and not resp.get("ok", False):
        return 3
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
