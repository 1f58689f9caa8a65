#!/usr/bin/env python3
"""Trigger one reminder job on the running backend, for use from crontab.

Example crontab (server clock in Europe/Warsaw):

    0 9 * * *  /usr/bin/python3 scripts/trigger_reminder_job.py appointment-reminders
    0 10 * * * /usr/bin/python3 scripts/trigger_reminder_job.py deposit-reminders
    0 11 * * * /usr/bin/python3 scripts/trigger_reminder_job.py post-service-reminders
    0 7 * * 1  /usr/bin/python3 scripts/trigger_reminder_job.py client-status-refresh
"""

from __future__ import annotations

import argparse
import json
import sys
import urllib.error
import urllib.request
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
BACKEND_SRC = ROOT_DIR / "backend" / "src"
if str(BACKEND_SRC) not in sys.path:
    sys.path.insert(0, str(BACKEND_SRC))

from studio_reminders.jobs import JOB_NAMES

BASE_URL_DEFAULT = "http://localhost:8000/api/v1/reminders"


def post_json(url: str, data: dict, *, timeout: float) -> dict:
    """POST JSON to a URL and return parsed response."""
    body = json.dumps(data).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=body,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        return json.loads(resp.read().decode("utf-8"))


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Trigger a studio reminder job.")
    parser.add_argument("job", choices=JOB_NAMES, help="Job to run")
    parser.add_argument("--base-url", default=BASE_URL_DEFAULT, help="Reminders API base URL")
    parser.add_argument("--timeout", type=float, default=120.0, help="HTTP timeout in seconds")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    url = f"{args.base_url.rstrip('/')}/trigger"
    try:
        response = post_json(url, {"job": args.job}, timeout=args.timeout)
    except urllib.error.HTTPError as e:
        error_body = e.read().decode("utf-8") if e.fp else "unknown"
        print(f"ERROR: {args.job} failed: {e.code} {error_body}", file=sys.stderr)
        return 2
    except urllib.error.URLError as e:
        print(f"ERROR: could not reach {url}: {e.reason}", file=sys.stderr)
        return 2

    result = response.get("job_result", {})
    print(response.get("message", ""))
    print(f"  messages sent: {result.get('messages_sent', 0)}")
    for error in result.get("errors", []):
        print(f"  error: {error}")
    return 0 if response.get("success") else 1


if __name__ == "__main__":
    raise SystemExit(main())
