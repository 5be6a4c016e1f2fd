#!/usr/bin/env python3
"""Provision a business row so the webhook can route messages to it."""

from __future__ import annotations

import argparse
import sys

from bookingbot.database import init_db, session_scope
from bookingbot.services import BusinessService


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a business for the booking assistant")
    parser.add_argument("--name", required=True, help="Business display name")
    parser.add_argument("--whatsapp-number", required=True, help="Twilio WhatsApp number customers write to, e.g. +14155238886")
    parser.add_argument("--owner-phone", default=None, help="Owner phone for booking notifications")
    parser.add_argument("--work-start", default="09:00")
    parser.add_argument("--work-end", default="18:00")
    parser.add_argument("--working-days", default="6,0,1,2,3", help="Comma separated weekdays, 0=Monday (default: Sun-Thu)")
    parser.add_argument("--duration", type=int, default=30, help="Default appointment length in minutes")
    args = parser.parse_args(argv)

    init_db()
    with session_scope() as db:
        existing = BusinessService.get_by_whatsapp_number(db, args.whatsapp_number)
        if existing:
            print(f"business already exists: id={existing.id} name={existing.name}")
            return 1
        business = BusinessService.create_business(
            db,
            name=args.name,
            whatsapp_number=args.whatsapp_number,
            owner_phone=args.owner_phone,
            work_start=args.work_start,
            work_end=args.work_end,
            working_days=args.working_days,
            appointment_duration=args.duration,
        )

    print(f"created business id={business.id}")
    print(f"connect its calendar at /connect-calendar?business_id={business.id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
