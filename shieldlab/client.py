#!/usr/bin/env python3
"""Submit a single event to the ingest endpoint, signed the way /ingest verifies it."""
import argparse
import hmac
import hashlib
import json
import os
import secrets
import socket
import sys
import time
from urllib import request as urlrequest
from urllib.error import URLError, HTTPError


def sign_hmac(secret: str, body_bytes: bytes, ts: int | None = None):
    ts = str(int(time.time()) if ts is None else ts)
    nonce = secrets.token_hex(16)
    msg = ts.encode() + b"\n" + nonce.encode() + b"\n" + body_bytes
    sig = hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()
    return ts, nonce, sig


def signed_headers(secret: str, body_bytes: bytes) -> dict:
    headers = {"Content-Type": "application/json"}
    if secret:
        ts, nonce, sig = sign_hmac(secret, body_bytes)
        headers.update({"X-Timestamp": ts, "X-Nonce": nonce, "X-Signature": sig})
    return headers


def encode_body(payload: dict) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def post_event(url: str, secret: str, payload: dict, timeout: int = 5):
    body_bytes = encode_body(payload)
    req = urlrequest.Request(url, data=body_bytes, method="POST", headers=signed_headers(secret, body_bytes))
    with urlrequest.urlopen(req, timeout=timeout) as resp:
        return resp.status, resp.read().decode("utf-8", errors="replace")


def main(argv=None):
    ap = argparse.ArgumentParser(description="Submit one event to ShieldLab")
    ap.add_argument("kind", help="event kind, e.g. filedelete or loginfailure")
    ap.add_argument("message", nargs="?", default="", help="file path or log message")
    ap.add_argument("--url", default=os.getenv("SHIELDLAB_INGEST_URL", "http://127.0.0.1:8000/ingest"))
    ap.add_argument("--secret", default=os.getenv("SHIELDLAB_HMAC_SECRET", ""))
    ap.add_argument("--host", default=os.getenv("SHIELDLAB_HOST", socket.gethostname()))
    ap.add_argument("--source", choices=["agent", "logparser"], default="agent")
    ap.add_argument("--os", dest="operating_system", default=sys.platform)
    ap.add_argument("--user", dest="username")
    ap.add_argument("--ip", dest="ip_address")
    args = ap.parse_args(argv)

    payload = {
        "source": args.source,
        "kind": args.kind,
        "path_or_message": args.message,
        "hostname": args.host,
        "operating_system": args.operating_system,
    }
    if args.username:
        payload["username"] = args.username
    if args.ip_address:
        payload["ip_address"] = args.ip_address

    try:
        status, body = post_event(args.url, args.secret, payload)
    except HTTPError as e:
        print(f"[submit] HTTPError {e.code}: {e.read().decode(errors='replace')}")
        return 1
    except URLError as e:
        print(f"[submit] URLError: {e}")
        return 1

    print(f"[submit] {status}: {body}")
    return 0 if 200 <= status < 300 else 1


if __name__ == "__main__":
    raise SystemExit(main())
