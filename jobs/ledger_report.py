"""
Arbitrage Ledger - Report Job

Offline report over the ledger database:

1. Open the configured database (or --db-url)
2. Select records with the same filters the dashboard uses
3. Print the dashboard summary as JSON, or write one CSV row of engine
   metrics per record

Reliability Level: Offline Job
Decimal Integrity: Figures are written as Decimal strings, never floats

Usage:
    python -m jobs.ledger_report --preset this_month
    python -m jobs.ledger_report --status all --csv out/ledger.csv
"""

import argparse
import csv
import json
import logging
import sys
from typing import Any, Dict, List, Optional, TextIO

from sqlalchemy.orm import sessionmaker

from app.database.session import build_engine
from services.ledger_config import LedgerConfigurationError, get_ledger_config
from services.ledger_errors import LedgerError
from services.ledger_reports import summarize_transactions
from services.sql_transaction_store import SqlTransactionStore
from services.transaction_filters import (
    DatePreset,
    PaymentMethodFilter,
    StatusFilter,
    TransactionFilter,
    VisibilityFilter,
)
from services.transaction_models import TransactionRecord

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'

CSV_COLUMNS = [
    "display_id",
    "created_at",
    "status",
    "payment_method",
    "fiat_currency",
    "settlement_mode",
    "fiat_amount",
    "fiat_rate",
    "usdt_amount",
    "usdt_rate",
    "cost_lyd",
    "return_lyd",
    "realized_return_lyd",
    "profit_lyd",
    "realized_profit_lyd",
    "effective_profit",
    "surplus_usdt",
    "retained_amount",
    "margin",
]


# =============================================================================
# Report helpers
# =============================================================================

def metrics_row(record: TransactionRecord) -> Dict[str, Any]:
    """One CSV row: record identity plus quantized engine output."""
    metrics = record.metrics()
    figures = metrics.quantized().to_dict()
    return {
        "display_id": record.display_id,
        "created_at": record.created_at.isoformat(),
        "status": record.status.value,
        "payment_method": record.payment_method.value,
        "fiat_currency": record.fiat_currency.value,
        "settlement_mode": figures["settlement_mode"],
        "fiat_amount": str(record.fiat_amount),
        "fiat_rate": str(record.fiat_rate),
        "usdt_amount": str(record.usdt_amount),
        "usdt_rate": str(record.usdt_rate),
        "cost_lyd": figures["cost_lyd"],
        "return_lyd": figures["return_lyd"],
        "realized_return_lyd": figures["realized_return_lyd"],
        "profit_lyd": figures["profit_lyd"],
        "realized_profit_lyd": figures["realized_profit_lyd"],
        "effective_profit": str(record.effective_profit(metrics)),
        "surplus_usdt": figures["surplus_usdt"],
        "retained_amount": str(record.retained_amount(metrics)),
        "margin": figures["margin"],
    }


def write_metrics_csv(records: List[TransactionRecord], out: TextIO) -> int:
    writer = csv.DictWriter(out, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for record in records:
        writer.writerow(metrics_row(record))
    return len(records)


def load_records(
    database_url: str,
    transaction_filter: TransactionFilter
) -> List[TransactionRecord]:
    engine = build_engine(database_url)
    session = sessionmaker(bind=engine)()
    try:
        return SqlTransactionStore(session).list(transaction_filter, ascending=True)
    finally:
        session.close()
        engine.dispose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Summarize the arbitrage ledger or export per-transaction metrics"
    )
    parser.add_argument(
        "--db-url",
        type=str,
        default=None,
        help="Database URL (default: LEDGER_DATABASE_URL)"
    )
    parser.add_argument(
        "--preset",
        type=DatePreset,
        choices=list(DatePreset),
        default=DatePreset.ALL,
        help="Created-at range preset (default: all)"
    )
    parser.add_argument(
        "--status",
        type=StatusFilter,
        choices=list(StatusFilter),
        default=StatusFilter.DONE,
        help="Status filter (default: done)"
    )
    parser.add_argument(
        "--payment-method",
        type=PaymentMethodFilter,
        choices=list(PaymentMethodFilter),
        default=PaymentMethodFilter.ALL,
    )
    parser.add_argument(
        "--visibility",
        type=VisibilityFilter,
        choices=list(VisibilityFilter),
        default=VisibilityFilter.ALL,
    )
    parser.add_argument(
        "--csv",
        type=str,
        default=None,
        help="Write per-transaction metrics to this CSV path instead of printing a summary"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    return parser


def run(argv: Optional[List[str]] = None, out: TextIO = sys.stdout) -> int:
    """Run the report; returns the process exit code."""
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    transaction_filter = TransactionFilter.for_preset(
        args.preset,
        status=args.status,
        payment_method=args.payment_method,
        visibility=args.visibility,
    )

    try:
        database_url = args.db_url or get_ledger_config().database_url
        records = load_records(database_url, transaction_filter)
    except (LedgerConfigurationError, LedgerError) as e:
        logger.error(f"[{e.error_code}] Report failed | error={e.message}")
        return 1

    logger.info(
        f"[LEDGER-REPORT] Records selected | count={len(records)} | "
        f"preset={args.preset.value} | status={args.status.value}"
    )

    if args.csv:
        with open(args.csv, "w", newline="", encoding="utf-8") as f:
            written = write_metrics_csv(records, f)
        logger.info(f"[LEDGER-REPORT] CSV written | path={args.csv} | rows={written}")
        return 0

    json.dump(summarize_transactions(records).to_dict(), out, indent=2)
    out.write("\n")
    return 0


def main():
    """CLI entry point for the report job."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    sys.exit(run())


if __name__ == "__main__":
    main()
