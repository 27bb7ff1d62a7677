import argparse
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

"""
Ledger Export - Main Entry Point

Command-line interface for exporting an institution's transaction history
into budgeting-tool CSV files (Date, Payee, Notes, Category, Amount).

Usage:
    python main.py --institution rbc                       # all accounts, all history
    python main.py --institution wealthsimple --range month
    python main.py --institution neo --account credit/<id> --since 2024-01-01
    python main.py --institution rbc --headless --debug

A browser window opens on the institution's login page; log in by hand and
the export runs against the institution's API using that session.
"""
from ledger_export.config import Config, settings
from ledger_export.errors import ExportError
from ledger_export.exporter import Exporter, RANGES, range_start
from ledger_export.neofinancial import NeoClient
from ledger_export.rbc import RBCClient
from ledger_export.session import BrowserSession
from ledger_export.utils import CSVWriter
from ledger_export.wealthsimple import WealthsimpleClient

INSTITUTIONS = {
    "rbc": RBCClient,
    "wealthsimple": WealthsimpleClient,
    "neo": NeoClient,
}


def configure_logging(debug: bool):
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
    root = logging.getLogger("ledger_export")
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.addHandler(handler)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ledger Export - Transaction History to CSV")
    parser.add_argument(
        "--institution",
        choices=list(INSTITUTIONS.keys()),
        required=True,
        help="Institution to export from"
    )
    parser.add_argument(
        "--account",
        action="append",
        default=[],
        help="Account id to export (repeatable; default: every listed account). Neo ids look like credit/<id>"
    )
    window = parser.add_mutually_exclusive_group()
    window.add_argument(
        "--range",
        choices=RANGES,
        default="all",
        help="Time window to export (default: all)"
    )
    window.add_argument(
        "--since",
        type=date.fromisoformat,
        help="Export transactions from this date (YYYY-MM-DD)"
    )
    parser.add_argument("--output-dir", type=Path, help="Directory for the CSV files (overrides config)")
    parser.add_argument("--config", type=Path, help="Path to a config.yaml")
    parser.add_argument("--headless", action="store_true", help="Run in headless mode (overrides config)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    config = Config.load(args.config) if args.config else settings
    if args.headless:
        config.headless = True
    if args.debug:
        config.debug = True
    if args.output_dir:
        config.output_dir = args.output_dir
    configure_logging(config.debug)

    client_cls = INSTITUTIONS[args.institution]
    today = datetime.now(config.zone()).date()
    start = args.since if args.since else range_start(args.range, today)

    print("Starting Ledger Export...")
    print(f"Output directory: {config.output_dir.resolve()}")

    try:
        with BrowserSession(config) as session:
            session.login(client_cls)
            client = client_cls.from_browser(session.context, session.page, config)

            account_ids = args.account or [a.id for a in client.list_accounts()]
            if not account_ids:
                print("No accounts selected.")
                return 1

            result = Exporter(client, config).export(account_ids, start)
    except ExportError as e:
        print(f"Export failed: {e}")
        body = getattr(e, "response_body", "")
        if body:
            print(f"Response: {body[:1000]}")
        return 1

    writer = CSVWriter(config.output_dir / client.get_institution_name())
    for account_id, exported in result.files.items():
        path = writer.write(exported)
        print(f"Saved {account_id} to {path}")

    if result.skips:
        print(f"\n{len(result.skips)} transactions were skipped:")
        for skip in result.skips:
            print(f"  [{skip.reason.value}] {skip.account_id}: {skip.message}")

    for account_id, error in result.failures.items():
        print(f"Error exporting {account_id}: {error}")

    print("\nAll tasks completed.")
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
