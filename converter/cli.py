#!/usr/bin/env python3
"""Simple CLI for quoting and running bonding curve conversions"""

import argparse
import asyncio
from decimal import Decimal
from typing import Optional

from .config import settings
from .core.conversion.models import StepProgress
from .core.curve.models import ConversionDirection, ConversionQuote
from .core.errors import ConversionError
from .logging_config import clear_conversion_context, setup_logging
from .providers.rpc import JsonRpcClient
from .services.session import ConversionSession, create_session


def format_amount(amount: int, decimals: int, places: int = 6) -> str:
    """Render base units as a whole-token decimal string"""
    value = Decimal(int(amount)) / (Decimal(10) ** decimals)
    return f"{value:,.{places}f}"


def print_quote(session: ConversionSession, quote: ConversionQuote):
    """Pretty print a quote"""
    source = session.registry.source_token(quote.direction)
    target = session.registry.target_token(quote.direction)

    print("\n💱 Conversion Quote")
    print("=" * 50)
    print(f"You pay:        {format_amount(quote.request.source_amount, source.decimals)} {source.symbol}")
    print(f"You receive:    {format_amount(quote.estimated_received, target.decimals)} {target.symbol}")
    print(f"At least:       {format_amount(quote.minimum_received, target.decimals)} {target.symbol} "
          f"({quote.slippage_pct}% slippage)")
    print(f"Unit price:     1 {source.symbol} = {format_amount(quote.price_per_unit, 18)} {target.symbol}")

    tribute_token = source if quote.direction.is_buy else target
    print(f"Tribute:        {format_amount(quote.tribute_retained, tribute_token.decimals)} "
          f"{tribute_token.symbol} ({quote.tribute_pct}%)")


async def load_quote(session: ConversionSession, amount: str, use_all: bool) -> Optional[ConversionQuote]:
    """Start the session and wait for the quote of ``amount``"""
    await session.start()

    if use_all:
        if not await session.convert_all():
            print("❌ No account configured; cannot read the balance")
            return None
    elif not await session.handle_source_input(amount):
        print(f"❌ Invalid amount: {amount}")
        return None

    await session.wait_for_quote()
    return session.quote


async def cli_quote(session: ConversionSession, amount: str, use_all: bool = False):
    """CLI command to quote a conversion"""
    quote = await load_quote(session, amount, use_all)
    if quote:
        print_quote(session, quote)


async def cli_convert(session: ConversionSession, amount: str, use_all: bool = False, assume_yes: bool = False):
    """CLI command to run a conversion end to end"""
    quote = await load_quote(session, amount, use_all)
    if not quote:
        return
    print_quote(session, quote)

    reasons = session.blocking_reasons()
    if reasons:
        print(f"\n⛔ Cannot convert: {', '.join(r.value for r in reasons)}")
        return

    if not assume_yes:
        answer = input("\nProceed? [y/N] ").strip().lower()
        if answer not in ("y", "yes"):
            print("Cancelled")
            return

    async def on_step(index: int, progress: StepProgress):
        plan = session.planner.plan
        label = plan.labels[index] if plan else f"Step {index + 1}"
        suffix = f" {progress.tx_hash}" if progress.tx_hash else ""
        print(f"  [{index + 1}/{len(plan) if plan else '?'}] {label}: {progress.status.value}{suffix}")

    session.planner.register_step_callback(on_step)

    try:
        print("\n🚀 Executing plan")
        receipt = await session.confirm()
    except ConversionError as e:
        print(f"❌ {e.category.value}: {e}")
        return
    finally:
        clear_conversion_context()

    if receipt is None:
        print("Conversion cancelled")
        return

    target = session.registry.target_token(receipt.direction)
    print(f"\n✅ Converted {format_amount(receipt.converted_total, target.decimals)} {target.symbol}")
    href = session.registry.explorer_href(receipt.tx_hash)
    if href:
        print(f"   {href}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bonding curve converter CLI")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    for name, help_text in (("quote", "Quote a conversion"), ("convert", "Quote and execute a conversion")):
        command_parser = subparsers.add_parser(name, help=help_text)
        command_parser.add_argument("amount", nargs="?", default="", help="Amount of the source token")
        command_parser.add_argument("--sell", action="store_true", help="Convert bonded tokens back to collateral")
        command_parser.add_argument("--all", action="store_true", help="Use the full source balance")
        if name == "convert":
            command_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    return parser


async def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging(args.log_level)

    rpc = JsonRpcClient(
        rpc_url=settings.rpc_url,
        timeout_seconds=settings.request_timeout_seconds,
        poll_interval_seconds=settings.receipt_poll_seconds,
    )
    session = create_session(settings, rpc=rpc)
    if args.sell:
        session.assembler.direction = ConversionDirection.FROM_BONDED

    try:
        if args.command == "quote":
            await cli_quote(session, args.amount, args.all)
        elif args.command == "convert":
            await cli_convert(session, args.amount, args.all, args.yes)
    finally:
        await session.close()
        await rpc.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
