#!/usr/bin/env python3
"""Relay client: submit tasks, poll their status and inspect the queue.

Usage:
  python scripts/relay_client.py submit "Fix the failing test" [--file src/x.py --line 10] [--image shot.png] [--wait]
  python scripts/relay_client.py status <task_id> [--wait]
  python scripts/relay_client.py queue
  python scripts/relay_client.py health

Reads RELAY_API_BASE (default http://localhost:9090) from the environment or api/.env.
"""

import argparse
import base64
import json
import mimetypes
import os
import sys
import time
from typing import Any, Optional

import httpx
from dotenv import load_dotenv

_api_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(os.path.join(_api_dir, ".env"))

BASE = os.environ.get("RELAY_API_BASE", "http://localhost:9090").rstrip("/")
HTTP_TIMEOUT = float(os.environ.get("RELAY_HTTP_TIMEOUT", "30"))
POLL_INTERVAL = float(os.environ.get("RELAY_POLL_INTERVAL", "2"))
TERMINAL = {"completed", "failed"}


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _attachment(path: str) -> dict[str, str]:
    mime_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    with open(path, "rb") as fh:
        data = base64.b64encode(fh.read()).decode("ascii")
    return {"data": data, "mimeType": mime_type, "description": os.path.basename(path)}


def build_payload(args: argparse.Namespace) -> dict[str, Any]:
    context: dict[str, Any] = {"source": "relay-client"}
    if args.file:
        context["file"] = args.file
    if args.line:
        context["line"] = args.line
    if args.log:
        context["log"] = args.log
    payload: dict[str, Any] = {"prompt": args.prompt, "context": context}
    if args.image:
        payload["attachments"] = [_attachment(path) for path in args.image]
    return payload


def wait_for_task(client: httpx.Client, task_id: str, timeout_s: float) -> Optional[dict[str, Any]]:
    """Poll until the task is terminal, the server says stop polling, or the timeout passes."""
    deadline = time.monotonic() + timeout_s
    last_position: Optional[int] = None
    while time.monotonic() < deadline:
        resp = client.get(f"{BASE}/tasks/{task_id}/status")
        body = resp.json()
        if resp.status_code == 404 or body.get("stop_polling"):
            print(f"task {task_id} not found; stopping", file=sys.stderr)
            return None
        resp.raise_for_status()
        position = body.get("queuePosition")
        if position != last_position:
            print(f"task {task_id}: {body.get('status')} (position {position})", file=sys.stderr)
            last_position = position
        if body.get("status") in TERMINAL:
            return body
        time.sleep(POLL_INTERVAL)
    print(f"task {task_id}: gave up after {timeout_s:.0f}s", file=sys.stderr)
    return None


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="devrelay command-line client")
    sub = ap.add_subparsers(dest="command", required=True)

    submit = sub.add_parser("submit", help="Submit a prompt")
    submit.add_argument("prompt")
    submit.add_argument("--file", help="Related file path (context)")
    submit.add_argument("--line", type=int, help="Related line number (context)")
    submit.add_argument("--log", help="Log or error text (context)")
    submit.add_argument("--image", action="append", help="Attach an image file (repeatable)")
    submit.add_argument("--wait", action="store_true", help="Poll until the task finishes")
    submit.add_argument("--timeout", type=float, default=900.0)

    status = sub.add_parser("status", help="Show a task snapshot")
    status.add_argument("task_id")
    status.add_argument("--wait", action="store_true")
    status.add_argument("--timeout", type=float, default=900.0)

    sub.add_parser("queue", help="Show the task queue")
    sub.add_parser("health", help="Show service health")

    args = ap.parse_args(argv)

    with httpx.Client(timeout=HTTP_TIMEOUT) as client:
        if args.command == "submit":
            resp = client.post(f"{BASE}/tasks", json=build_payload(args))
            body = resp.json()
            _print(body)
            if resp.status_code != 202:
                return 1
            if args.wait:
                final = wait_for_task(client, body["id"], args.timeout)
                if final is None:
                    return 1
                _print(final)
                return 0 if final.get("status") == "completed" else 1
            return 0
        if args.command == "status":
            if args.wait:
                final = wait_for_task(client, args.task_id, args.timeout)
                if final is None:
                    return 1
                _print(final)
                return 0
            resp = client.get(f"{BASE}/tasks/{args.task_id}/status")
            _print(resp.json())
            return 0 if resp.status_code == 200 else 1
        if args.command == "queue":
            _print(client.get(f"{BASE}/queue").json())
            return 0
        resp = client.get(f"{BASE}/health")
        _print(resp.json())
        return 0 if resp.json().get("status") == "ok" else 1


if __name__ == "__main__":
    sys.exit(main())
