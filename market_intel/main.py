"""Main entry point with CLI."""
import argparse
import asyncio
import logging
import sys

import orjson

from market_intel.config import config, Config
from market_intel.errors import MarketIntelError
from market_intel.logging_conf import setup_logging
from market_intel.models import JobStatus, KeywordRun, SellerRun
from market_intel.services import Services, build_services

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Market Intelligence Pipeline")

    # Collection runs
    target = parser.add_mutually_exclusive_group()
    target.add_argument(
        "--keyword",
        type=str,
        default=None,
        help="Collect sold listings for a keyword",
    )
    target.add_argument(
        "--seller",
        type=str,
        default=None,
        help="Collect a seller's active listings",
    )
    parser.add_argument(
        "--user",
        type=str,
        default="cli",
        help="User id that owns the run (default: cli)",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help=f"Page cap per run (default: {config.MAX_PAGES})",
    )

    # Scheduled analysis
    parser.add_argument(
        "--snapshot",
        action="store_true",
        help="Capture price/watcher snapshots of active listings",
    )
    parser.add_argument(
        "--detect-surges",
        action="store_true",
        help="Report price-drop interest surges",
    )
    parser.add_argument(
        "--refresh-global",
        action="store_true",
        help="Recompute global benchmarks",
    )
    parser.add_argument(
        "--trends",
        action="store_true",
        help="Print top trends",
    )
    parser.add_argument(
        "--price-bands",
        type=str,
        default=None,
        metavar="KEYWORD",
        help="Print price bands for a keyword's sold comparables",
    )

    parser.add_argument(
        "--dev",
        action="store_true",
        help="Verbose logs and no Supabase mirroring",
    )

    args = parser.parse_args(argv)
    if not any(
        (args.keyword, args.seller, args.snapshot, args.detect_surges, args.refresh_global, args.trends, args.price_bands)
    ):
        parser.error("Nothing to do: pass --keyword, --seller or an analysis flag")
    return args


def _print_json(data) -> None:
    print(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())


async def run(args: argparse.Namespace, services: Services) -> int:
    """Execute the requested actions. Returns the process exit code."""
    await services.initialize()
    exit_code = 0
    try:
        if args.keyword or args.seller:
            request = KeywordRun(keyword=args.keyword.lower()) if args.keyword else SellerRun(seller_name=args.seller)
            job = await services.orchestrator.run(args.user, request)
            _print_json(job.to_status())
            if job.status == JobStatus.FAILED:
                exit_code = 1

        if args.snapshot:
            written = await services.volatility.snapshot_state()
            logger.info(f"Snapshots written: {written}")

        if args.detect_surges:
            surges = await services.volatility.detect_surges()
            _print_json([s.model_dump(mode="json") for s in surges])

        if args.trends:
            entries = await services.trends.top_trends()
            _print_json([e.model_dump() for e in entries])

        if args.price_bands:
            band = await services.pricing.bands_for(keyword=args.price_bands)
            _print_json(band.model_dump())

        if args.refresh_global:
            if not await services.cache.refresh_global():
                exit_code = 1
    finally:
        await services.cache.drain()
        await services.aclose()
    return exit_code


def main(argv=None) -> None:
    """Main entry point."""
    setup_logging()
    args = parse_args(argv)

    if args.dev:
        logging.getLogger().setLevel(logging.DEBUG)
    if args.max_pages:
        config.MAX_PAGES = args.max_pages
        config.SELLER_MAX_PAGES = args.max_pages

    needs_marketplace = bool(args.keyword or args.seller)
    try:
        Config.validate(require_marketplace=needs_marketplace)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("Market Intelligence Pipeline Starting")
    logger.info(f"Environment: {config.EBAY_ENVIRONMENT}")
    if needs_marketplace:
        logger.info(f"Target: {'keyword ' + args.keyword if args.keyword else 'seller ' + args.seller}")
        logger.info(f"Max pages: {config.MAX_PAGES}, page size: {config.PAGE_SIZE}")
    logger.info(f"Supabase mirror: {config.supabase_enabled() and not args.dev}")
    logger.info("=" * 60)

    services = build_services(use_supabase=False if args.dev else None)
    try:
        exit_code = asyncio.run(run(args, services))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except MarketIntelError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
