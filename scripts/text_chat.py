#!/usr/bin/env python3

from __future__ import annotations

import argparse
import sys

import httpx


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Interactive text chat with the booking assistant via /agent/turn")
    parser.add_argument("--base-url", default="http://localhost:8000", help="API base URL (default: http://localhost:8000)")
    parser.add_argument("--business-id", type=int, default=1, help="Business id to talk to (default: 1)")
    parser.add_argument("--phone", default="+972500000001", help="Customer phone to impersonate")
    parser.add_argument("--api-key", default="", help="X-API-Key header, when the server requires one")
    parser.add_argument("--timeout", type=float, default=45.0, help="HTTP timeout seconds (default: 45)")
    args = parser.parse_args(argv)

    base_url = args.base_url.rstrip("/")
    headers = {"X-API-Key": args.api_key} if args.api_key else {}

    print("Text chat started. Type /exit to quit, /new to start a fresh conversation.")

    with httpx.Client(timeout=args.timeout, headers=headers) as client:
        while True:
            try:
                user_text = input("you> ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                break

            if not user_text:
                continue
            if user_text.lower() in {"/exit", "/quit", "exit", "quit"}:
                break

            req = {
                "business_id": args.business_id,
                "customer_phone": args.phone,
                "message": user_text,
            }

            try:
                resp = client.post(f"{base_url}/agent/turn", json=req)
                resp.raise_for_status()
                data = resp.json()
            except httpx.HTTPStatusError as e:
                print(f"error> HTTP {e.response.status_code}: {e.response.text}")
                continue
            except httpx.HTTPError as e:
                print(f"error> {e}")
                continue

            reply = (data.get("reply") or "").strip()
            print(f"bot> {reply}" if reply else "bot> (empty response)")

    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
