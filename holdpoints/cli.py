"""CLI for the holder points snapshot job."""

import argparse
import asyncio
import logging
import sys

from .config import load_settings
from .errors import ConfigError, HoldPointsError
from .pipeline import run

log = logging.getLogger("holdpoints")


def setup_logging(level):
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="holdpoints",
        description="Build the holder points leaderboard snapshot (configured via environment)",
    )
    parser.add_argument("--env-file", help="Load this dotenv file instead of .env.local/.env")
    parser.add_argument("--top", type=int, default=10, help="How many top holders to print")
    return parser


def print_summary(settings, result, top):
    snapshot = result.snapshot
    report = result.report

    print("\n=== Holder Points Summary ===")
    print(f"Contract: {snapshot['contract']}")
    print(f"Rule: {settings.points_per_window} points / {snapshot['rule']['windowHours']}h since {snapshot['rule']['startAt']}")
    print(f"Discovery: {report.strategy} ({report.requests} requests)")
    if result.span is not None:
        print(f"Block span: {result.span.start_block} -> {result.span.latest_block}")
    if report.target_supply is not None:
        print(f"Tokens found: {report.tokens_found} / {report.target_supply}")
    else:
        print(f"Tokens found: {report.tokens_found}")
    print(f"Holders: {snapshot['totalHolders']}")

    if top > 0 and snapshot["leaderboard"]:
        print(f"\nTop {top} holders:")
        for i, row in enumerate(snapshot["leaderboard"][:top]):
            print(f"  {i + 1}. {row['address']}: {row['points']} points ({row['tokens']} tokens)")

    print(f"\nWrote {result.output_path}")


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.env_file)
    except ConfigError as e:
        setup_logging("INFO")
        log.error("Configuration error: %s", e)
        return 2

    setup_logging(settings.log_level)
    log.info("Explorer: %s", settings.explorer_api_base)
    log.info("Contract: %s", settings.contract)
    log.info(
        "Scoring: %d points / %ds window, start at %s",
        settings.points_per_window, settings.window_seconds, settings.start_at,
    )

    try:
        result = asyncio.run(run(settings))
    except HoldPointsError as e:
        log.error("Snapshot failed: %s", e)
        return 1

    print_summary(settings, result, args.top)
    if not result.report.reconciled:
        print("Warning: supply not fully reconciled, leaderboard is partial", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
