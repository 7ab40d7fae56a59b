# main.py

"""Entry point for the pricewatch refresh pipeline CLI."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pricewatch.config.logging_config import setup_logging
from pricewatch.config.settings import Settings

logger = logging.getLogger("pricewatch.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="pricewatch",
        description="Tracked-URL price refresh pipeline.",
        epilog=(
            f"Daily schedule: {Settings.SCHEDULE_HOUR:02d}:"
            f"{Settings.SCHEDULE_MINUTE:02d} {Settings.SCHEDULE_TIMEZONE}"
        ),
    )
    parser.add_argument(
        "--db",
        default=None,
        dest="db_path",
        help="SQLite database path (default: data/pricewatch.db).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser(
        "refresh", help="Run one price refresh pass now.",
    )
    commands.add_parser(
        "schedule", help="Run the refresh pass on the daily schedule.",
    )

    quota = commands.add_parser("quota", help="Show an owner's URL quota.")
    quota.add_argument("owner", help="Owner id.")

    add = commands.add_parser("add", help="Start tracking a URL.")
    add.add_argument("owner", help="Owner id.")
    add.add_argument("url", help="Product page URL.")
    add.add_argument("-n", "--name", default="", help="Display name.")
    add.add_argument(
        "-p",
        "--product-id",
        type=int,
        default=None,
        dest="product_id",
        help="Existing canonical product to file this URL under.",
    )

    history = commands.add_parser(
        "history", help="Show the price history of one item.",
    )
    history.add_argument("item_id", type=int, help="Tracked item id.")

    changes = commands.add_parser(
        "changes", help="Show each item's latest price change.",
    )
    changes.add_argument("owner", help="Owner id.")
    return parser


def main() -> None:
    """Route to the requested sub-command and exit with its code."""
    log_file = setup_logging()
    logger.info("pricewatch starting, log file: %s", log_file)

    args = _build_parser().parse_args()
    db_path = Path(args.db_path) if args.db_path else None

    from pricewatch.cli import runner

    if args.command == "refresh":
        exit_code = asyncio.run(runner.run_refresh(db_path))
    elif args.command == "schedule":
        exit_code = runner.run_schedule(db_path)
    elif args.command == "quota":
        exit_code = runner.show_quota(args.owner, db_path)
    elif args.command == "add":
        exit_code = runner.add_item(
            args.owner,
            args.url,
            name=args.name,
            product_id=args.product_id,
            db_path=db_path,
        )
    elif args.command == "history":
        exit_code = runner.show_history(args.item_id, db_path)
    else:
        exit_code = runner.show_changes(args.owner, db_path)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
