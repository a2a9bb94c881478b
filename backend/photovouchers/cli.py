import argparse
import asyncio
import json
from datetime import datetime
from typing import Any

from photovouchers.core.config import settings
from photovouchers.db.session import SessionLocal
from photovouchers.services import fulfillment
from photovouchers.services.coupons import coupon_summary, get_coupon_resolver
from photovouchers.services.vouchers import deliver_due_vouchers, voucher_read


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=_json_default))


def list_coupons() -> None:
    resolver = get_coupon_resolver()
    _print_json([coupon_summary(resolver, coupon) for coupon in resolver.coupons()])


async def print_queue() -> None:
    async with SessionLocal() as session:
        vouchers = await fulfillment.list_print_queue(session)
        _print_json([voucher_read(v).model_dump(mode="json") for v in vouchers])


async def deliver_due() -> None:
    async with SessionLocal() as session:
        sent = await deliver_due_vouchers(session)
    print(f"Delivered {sent} voucher(s)")


async def secure_link(session_id: str, ttl: int) -> None:
    async with SessionLocal() as session:
        url, expires_at = await fulfillment.secure_link(session, session_id, ttl)
    _print_json({"url": url, "expires_at": expires_at})


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Voucher shop maintenance")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("coupons", help="Print the currently loaded coupons")
    subparsers.add_parser("print-queue", help="List post vouchers awaiting fulfillment")
    subparsers.add_parser("deliver-due", help="Email vouchers whose delivery date has passed")
    link = subparsers.add_parser("secure-link", help="Issue a signed, time-limited download link")
    link.add_argument("session_id", help="Checkout session id of the voucher")
    link.add_argument("--ttl", type=int, default=settings.voucher_link_default_ttl_seconds, help="Lifetime in seconds")
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "coupons":
        list_coupons()
        return True

    if args.command == "print-queue":
        asyncio.run(print_queue())
        return True

    if args.command == "deliver-due":
        asyncio.run(deliver_due())
        return True

    if args.command == "secure-link":
        asyncio.run(secure_link(args.session_id, args.ttl))
        return True

    return False


def main():
    parser = _build_parser()
    args = parser.parse_args()
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
