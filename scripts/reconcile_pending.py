"""Reconcile pending invoices against the payment provider.

Meant for cron: picks up orders whose customers never came back from the
hosted invoice page and whose webhook never arrived.
"""
import argparse
import asyncio

from orderpay.db import close_store, init_store
from orderpay.services.polling import reconcile_pending
from orderpay.settings import settings
from orderpay.utils.logging import configure_logging


async def run(max_orders: int, older_than_minutes: int) -> dict:
    await init_store()
    try:
        return await reconcile_pending(max_orders=max_orders, older_than_minutes=older_than_minutes)
    finally:
        await close_store()


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Poll the provider for every pending payment request")
    ap.add_argument("--max", type=int, default=100, help="Max payment requests to check")
    ap.add_argument(
        "--older-than-minutes", type=int, default=5,
        help="Only requests untouched for at least N minutes (0=all)",
    )
    args = ap.parse_args()
    configure_logging(settings.log_level, settings.log_json)
    result = asyncio.run(run(args.max, args.older_than_minutes))
    print(f"Checked {result['checked']}, updated {result['applied']} payment requests.")
