"""
Arbitrage Ledger - Jobs Module

Offline jobs run against the ledger database:
- ledger_report: dashboard summary as JSON or per-transaction metrics CSV

Reliability Level: Offline Job
"""

from jobs.ledger_report import (
    CSV_COLUMNS,
    metrics_row,
    write_metrics_csv,
    load_records,
    run,
)

__all__ = [
    "CSV_COLUMNS",
    "metrics_row",
    "write_metrics_csv",
    "load_records",
    "run",
]
