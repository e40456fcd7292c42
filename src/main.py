import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from csv_io import read_events, write_accounts
from payments_engine import PaymentsEngine
from settings import EngineSettings, SettingsLoadError, load_settings
from transaction_engine import TransactionEngine

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="payments-engine",
        description="Apply a CSV stream of transactions and print final client accounts as CSV.",
    )
    parser.add_argument("transactions", type=Path, help="input CSV (type, client, tx, amount)")
    parser.add_argument("--config", type=Path, default=None, help="YAML settings file")
    parser.add_argument("--workers", type=int, default=None, help="override num_workers from settings")
    return parser


def run(settings: EngineSettings, filepath: Path) -> int:
    if settings.concurrent:
        engine = PaymentsEngine(num_workers=settings.num_workers)
        snapshots = engine.process_file(filepath, amount_scale=settings.amount_scale)
    else:
        engine = TransactionEngine()
        with open(filepath, "r", newline="") as f:
            snapshots = engine.process(read_events(f, amount_scale=settings.amount_scale))

    write_accounts(sys.stdout, snapshots)
    print(engine.stats, file=sys.stderr)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config).with_workers(args.workers)
    except SettingsLoadError as e:
        print(f"ERROR: invalid settings: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.logging_level,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    if not args.transactions.is_file():
        print(f"ERROR: input file not found: {args.transactions}", file=sys.stderr)
        return 1

    logger.info(f"Processing {args.transactions} with {settings}")
    return run(settings, args.transactions)


if __name__ == "__main__":
    sys.exit(main())
