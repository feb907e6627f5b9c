"""
Unit Tests for the Ledger Report Job

Runs jobs.ledger_report against a SQLite file database.
"""

import csv
import importlib
import io
import json
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.orm import sessionmaker

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.database.session import build_engine
from jobs import ledger_report
from jobs.ledger_report import CSV_COLUMNS, metrics_row, run
from services.sql_transaction_store import SqlTransactionStore, create_schema
from services.transaction_lifecycle import TransactionLifecycleManager
from services.transaction_metrics import HybridSettlement
from services.transaction_models import PaymentMethod, TransactionStatus


@pytest.fixture
def db_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'ledger.db'}"
    engine = build_engine(url)
    create_schema(engine)
    session = sessionmaker(bind=engine)()
    manager = TransactionLifecycleManager(SqlTransactionStore(session), actor_id="operator-1")

    complete = manager.create_transaction(
        fiat_amount=Decimal("1000"),
        fiat_rate=Decimal("7.5"),
        usdt_amount=Decimal("1500"),
        usdt_rate=Decimal("6.1"),
    )
    manager.set_status(complete.id, TransactionStatus.COMPLETE)

    hybrid = manager.create_transaction(
        fiat_amount=Decimal("1000"),
        fiat_rate=Decimal("7.5"),
        usdt_amount=Decimal("1500"),
        usdt_rate=Decimal("6.1"),
        payment_method=PaymentMethod.BANK,
        settlement=HybridSettlement(bank_sell_rate=Decimal("6.5")),
    )
    manager.set_status(hybrid.id, TransactionStatus.COMPLETE)

    # Planned records are left out of the default (done) report
    manager.create_transaction(
        fiat_amount=Decimal("500"),
        fiat_rate=Decimal("7.5"),
        usdt_amount=Decimal("100"),
        usdt_rate=Decimal("6.1"),
    )

    session.close()
    engine.dispose()
    return url


class TestSummaryOutput:

    def test_done_summary(self, db_url):
        out = io.StringIO()
        assert run(["--db-url", db_url], out=out) == 0

        summary = json.loads(out.getvalue())
        assert summary["total_transactions"] == 2
        assert summary["total_profit"] == "3408.20"
        assert summary["cash_profit"] == "1650.00"
        assert summary["bank_profit"] == "1758.20"

    def test_all_statuses(self, db_url):
        out = io.StringIO()
        assert run(["--db-url", db_url, "--status", "all"], out=out) == 0
        assert json.loads(out.getvalue())["total_transactions"] == 3

    def test_payment_method_filter(self, db_url):
        out = io.StringIO()
        assert run(["--db-url", db_url, "--payment-method", "hybrid"], out=out) == 0
        assert json.loads(out.getvalue())["total_transactions"] == 1


class TestCsvOutput:

    def test_one_row_per_record(self, db_url, tmp_path):
        path = tmp_path / "ledger.csv"
        assert run(["--db-url", db_url, "--csv", str(path)]) == 0

        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))

        assert len(rows) == 2
        assert list(rows[0].keys()) == CSV_COLUMNS
        assert rows[0]["display_id"] == "CSH-1"
        assert rows[0]["profit_lyd"] == "1650.00"
        assert rows[1]["display_id"] == "BNK-2"
        assert rows[1]["settlement_mode"] == "hybrid"
        assert rows[1]["surplus_usdt"] == "270.49180328"


class TestFailures:

    def test_missing_schema_exits_nonzero(self, tmp_path, caplog):
        url = f"sqlite:///{tmp_path / 'empty.db'}"
        assert run(["--db-url", url], out=io.StringIO()) == 1
        assert "TXN-STORE-002" in caplog.text

    def test_invalid_preset_rejected(self, db_url):
        with pytest.raises(SystemExit):
            run(["--db-url", db_url, "--preset", "fortnight"])


def test_metrics_row_overrides_profit(db_url):
    engine = build_engine(db_url)
    session = sessionmaker(bind=engine)()
    manager = TransactionLifecycleManager(SqlTransactionStore(session))
    record = manager.list_transactions(ascending=True)[0]
    record = manager.override_profit(record.id, Decimal("10"))

    row = metrics_row(record)
    session.close()
    engine.dispose()

    assert row["profit_lyd"] == "1650.00"
    assert row["effective_profit"] == "10"


class TestEntryPoint:

    def test_import_leaves_root_logging_alone(self):
        with patch("logging.basicConfig") as basic_config:
            importlib.reload(ledger_report)
        basic_config.assert_not_called()

    def test_main_configures_logging_and_exits_with_run_code(self):
        with patch("logging.basicConfig") as basic_config, \
                patch.object(ledger_report, "run", return_value=1):
            with pytest.raises(SystemExit) as exc_info:
                ledger_report.main()

        basic_config.assert_called_once()
        assert exc_info.value.code == 1
