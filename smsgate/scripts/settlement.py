"""Settlement Script - Reconcile deposits and manage exchange rates.

Usage:
    # Re-verify unsettled deposits of the last 24 hours
    uv run python -m smsgate.scripts.settlement --action reconcile

    # Cancel expired checkout sessions
    uv run python -m smsgate.scripts.settlement --action expire

    # Set the NGN rate (quote units per settlement unit)
    uv run python -m smsgate.scripts.settlement --action set-rate --quote NGN --rate 1520

    # Webhook statistics
    uv run python -m smsgate.scripts.settlement --action stats --hours 48

Options:
    --action: reconcile, expire, set-rate, stats
    --lookback-hours: Reconciliation window (default: 24)
    --quote: Quote currency for set-rate
    --rate: Rate value for set-rate
    --ttl: Rate lifetime in seconds (default: no expiry)
    --hours: Statistics window (default: 24)
"""

import argparse
import asyncio
import logging
from decimal import Decimal

from smsgate.core.config import get_settings
from smsgate.db.engine import close_db, get_session
from smsgate.providers import FlutterwaveClient
from smsgate.services.exchange_rate_service import ExchangeRateService
from smsgate.services.settlement_service import SettlementService


async def reconcile_action(lookback_hours: int) -> None:
    """Re-verify unsettled deposits with the payment provider."""
    print(f"\nReconciling deposits of the last {lookback_hours}h...\n")

    payment_client = FlutterwaveClient()
    try:
        async with get_session() as db:
            service = SettlementService(db, payment_client)
            summary = await service.reconcile_deposits(lookback_hours)
    finally:
        await payment_client.close()

    print("=" * 50)
    print("Reconciliation Summary")
    print("=" * 50)
    for key in ("checked", "settled", "failed", "unchanged", "errors"):
        print(f"{key.capitalize()}: {summary.get(key, 0)}")


async def expire_action() -> None:
    async with get_session() as db:
        expired = await SettlementService(db).expire_stale_deposits()
    print(f"Expired {expired} stale deposits")


async def set_rate_action(quote: str, rate: Decimal, ttl: int | None) -> None:
    """Store a manual exchange rate."""
    base = get_settings().settlement_currency
    async with get_session() as db:
        record = await ExchangeRateService(db).set_rate(base, quote, rate, ttl_seconds=ttl)
    expiry = record.expires_at.isoformat() if record.expires_at else "never"
    print(f"{record.base_currency}/{record.quote_currency} = {record.rate} (expires: {expiry})")


async def stats_action(hours: int) -> None:
    """Show webhook statistics."""
    print(f"\nWebhook Statistics (last {hours}h)")
    print("=" * 50)

    async with get_session() as db:
        stats = await SettlementService(db).webhook_stats(hours)

    print(f"Total deliveries: {stats['total']}")
    print(f"Processed: {stats['processed']}")
    print(f"Failed: {stats['failed']}")
    print(f"Invalid signatures: {stats['invalid_signatures']}")
    print(f"Avg processing: {stats['avg_processing_ms']} ms")


async def main(args: argparse.Namespace) -> None:
    """Main entry point."""
    try:
        if args.action == "reconcile":
            await reconcile_action(args.lookback_hours)
        elif args.action == "expire":
            await expire_action()
        elif args.action == "set-rate":
            if not args.quote or args.rate is None:
                print("Error: --quote and --rate are required for set-rate action")
                return
            await set_rate_action(args.quote, args.rate, args.ttl)
        elif args.action == "stats":
            await stats_action(args.hours)
        else:
            print(f"Unknown action: {args.action}")
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(description="Deposit settlement operations")
    parser.add_argument(
        "--action",
        type=str,
        required=True,
        choices=["reconcile", "expire", "set-rate", "stats"],
        help="Action to perform",
    )
    parser.add_argument(
        "--lookback-hours",
        type=int,
        default=24,
        help="Reconciliation window in hours",
    )
    parser.add_argument("--quote", type=str, help="Quote currency code")
    parser.add_argument("--rate", type=Decimal, help="Quote units per settlement unit")
    parser.add_argument("--ttl", type=int, default=None, help="Rate lifetime in seconds")
    parser.add_argument("--hours", type=int, default=24, help="Statistics window in hours")

    args = parser.parse_args()
    asyncio.run(main(args))
