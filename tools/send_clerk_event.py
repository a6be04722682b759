#!/usr/bin/env python
"""
Send a signed Clerk user event to a deployed customer-sync endpoint.

Useful for smoke-testing a deployment: the event is signed with the same
Svix scheme Clerk uses, so it goes through signature verification and
reconciliation exactly like a real delivery.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib import error, request

from svix.webhooks import Webhook

EVENT_TYPES = ("user.created", "user.updated", "user.deleted")


@dataclass
class SendConfig:
    endpoint: str
    secret: str
    event_type: str
    clerk_id: str
    email: Optional[str]
    first_name: str
    last_name: str
    username: Optional[str]


def _parse_args() -> SendConfig:
    parser = argparse.ArgumentParser(
        description="Send a Svix-signed Clerk user event to POST /clerk-sync.",
    )
    parser.add_argument(
        "--endpoint",
        required=True,
        help="Full webhook URL, e.g. https://<api-id>.execute-api.us-east-1.amazonaws.com/dev/clerk-sync",
    )
    parser.add_argument(
        "--secret",
        default=os.environ.get("CLERK_WEBHOOK_SECRET", ""),
        help="Clerk signing secret, whsec_... (CLERK_WEBHOOK_SECRET).",
    )
    parser.add_argument("--type", dest="event_type", choices=EVENT_TYPES, default="user.created")
    parser.add_argument("--clerk-id", default=f"user_smoke_{uuid.uuid4().hex[:12]}")
    parser.add_argument("--email", default=None, help="Primary email address for the user.")
    parser.add_argument("--first-name", default="Smoke")
    parser.add_argument("--last-name", default="Test")
    parser.add_argument("--username", default=None)
    args = parser.parse_args()

    if not args.secret or not str(args.secret).strip():
        parser.error("--secret is required (or set CLERK_WEBHOOK_SECRET)")

    return SendConfig(
        endpoint=args.endpoint.strip(),
        secret=args.secret.strip(),
        event_type=args.event_type,
        clerk_id=args.clerk_id.strip(),
        email=(args.email.strip() if args.email else None),
        first_name=args.first_name,
        last_name=args.last_name,
        username=args.username,
    )


def _build_event(cfg: SendConfig) -> dict:
    if cfg.event_type == "user.deleted":
        return {"type": cfg.event_type, "object": "event", "data": {"id": cfg.clerk_id, "deleted": True}}

    email_addresses = []
    if cfg.email:
        email_addresses.append({"id": "idn_smoke", "email_address": cfg.email})
    return {
        "type": cfg.event_type,
        "object": "event",
        "data": {
            "id": cfg.clerk_id,
            "email_addresses": email_addresses,
            "primary_email_address_id": "idn_smoke" if cfg.email else None,
            "first_name": cfg.first_name,
            "last_name": cfg.last_name,
            "username": cfg.username,
            "image_url": None,
        },
    }


def _build_headers(cfg: SendConfig, body: bytes) -> Dict[str, str]:
    msg_id = f"msg_{uuid.uuid4().hex}"
    timestamp = datetime.fromtimestamp(int(time.time()), tz=timezone.utc)
    signature = Webhook(cfg.secret).sign(msg_id=msg_id, timestamp=timestamp, data=body.decode("utf-8"))
    return {
        "content-type": "application/json",
        "svix-id": msg_id,
        "svix-timestamp": str(int(timestamp.timestamp())),
        "svix-signature": signature,
    }


def _post_event(cfg: SendConfig, event: dict) -> dict:
    body = json.dumps(event, separators=(",", ":")).encode("utf-8")
    req = request.Request(
        cfg.endpoint,
        data=body,
        headers=_build_headers(cfg, body),
        method="POST",
    )
    try:
        with request.urlopen(req, timeout=30) as response:
            raw = response.read().decode("utf-8")
            return json.loads(raw)
    except error.HTTPError as exc:
        details = exc.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"Webhook HTTP {exc.code}: {details}") from exc
    except error.URLError as exc:
        raise RuntimeError(f"Webhook request failed: {exc}") from exc


def main() -> int:
    cfg = _parse_args()
    event = _build_event(cfg)

    print(f"Sending {cfg.event_type} for {cfg.clerk_id} to {cfg.endpoint}")
    result = _post_event(cfg, event)
    print(f"ok={result.get('ok')} status={result.get('status')}")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except KeyboardInterrupt:
        print("Cancelled", file=sys.stderr)
        raise SystemExit(130)
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(1)
