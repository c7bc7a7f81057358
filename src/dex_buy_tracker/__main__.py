"""Command line entry point: ``python -m dex_buy_tracker``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from dex_buy_tracker import __version__
from dex_buy_tracker.app import init_db, run
from dex_buy_tracker.config import get_settings

logger = logging.getLogger("dex_buy_tracker")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dex-buy-tracker", description="Multi-chain DEX buy alert tracker")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    run_parser = sub.add_parser("run", help="Track configured tokens and send buy alerts")
    run_parser.add_argument("--dry-run", action="store_true", help="Log alerts instead of sending them")

    sub.add_parser("init-db", help="Create the alert configuration schema")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    command = args.command or "run"

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    logging.basicConfig(level=settings.get_logging_level(), format=LOG_FORMAT)

    if command == "init-db":
        asyncio.run(init_db(settings))
        logger.info("Schema ready at %s", settings.redacted_summary()["database_url"])
        return 0

    dry_run = True if getattr(args, "dry_run", False) else None
    try:
        if dry_run is None:
            settings.validate_requirements()
        else:
            settings.model_copy(update={"dry_run": True}).validate_requirements()
    except ValueError as e:
        logger.error("%s", e)
        return 2

    try:
        asyncio.run(run(settings, dry_run=dry_run))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
