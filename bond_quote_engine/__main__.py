from __future__ import annotations

import argparse
import asyncio
import logging
import pandas as pd

from .config import PRICE_MODES, configure_logging, load_settings
from .engine import QuoteEngine
from .instruments import load_catalog
from .scheduler import QuoteScheduler

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Derive indicative bond quotes for an instrument catalog.")
    parser.add_argument("--catalog", required=True, help="Path to the instrument catalog JSON file")
    parser.add_argument("--mode", choices=PRICE_MODES, default=None, help="Override PRICE_MODE")
    parser.add_argument("--watch", action="store_true", help="Keep refreshing on the configured interval")
    return parser.parse_args(argv)


def print_report(engine: QuoteEngine) -> None:
    with pd.option_context("display.max_rows", None, "display.width", 160):
        print(engine.quotes_frame().to_string(index=False))
        print()
        print(engine.adapter_stats().to_string(index=False))

    report = engine.validate_quote_diversity()
    print()
    print("Quote diversity:", "OK" if report.is_valid else "INVALID")
    for w in report.warnings:
        print(" -", w)


async def run(args: argparse.Namespace) -> None:
    settings = load_settings()
    configure_logging(settings.log_level)

    engine = QuoteEngine(price_mode=args.mode, settings=settings)
    engine.load_instruments(load_catalog(args.catalog))

    try:
        if not args.watch:
            await engine.refresh_if_idle()
            print_report(engine)
            return

        scheduler = QuoteScheduler(engine)
        scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.shutdown()
    finally:
        await engine.aclose()


def main(argv=None) -> None:
    args = parse_args(argv)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
