"""
Unit Tests for the Record Stores

Runs the same behaviour checks against InMemoryTransactionStore and
SqlTransactionStore (SQLite in-memory engine).

Error Codes:
- TXN-NF-001: Transaction not found
- TXN-NF-002: Holder not found
- TXN-VAL-002: Unknown or immutable field in partial update
- TXN-VAL-004: Duplicate holder name
- TXN-STORE-001: Store write failed
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.ledger_errors import (
    HolderNotFoundError,
    LedgerErrorCode,
    LedgerStoreError,
    LedgerValidationError,
    TransactionNotFoundError,
)
from services.sql_transaction_store import SqlTransactionStore, create_schema
from services.transaction_filters import (
    PaymentMethodFilter,
    StatusFilter,
    TransactionFilter,
    VisibilityFilter,
)
from services.transaction_metrics import HybridSettlement, RetainedCurrency, RetainedSettlement
from services.transaction_models import (
    AuditAction,
    AuditEntry,
    Holder,
    HolderNote,
    OverriddenProfit,
    PaymentMethod,
    ProgressSteps,
    TransactionRecord,
    TransactionStatus,
    new_id,
)
from services.transaction_store import InMemoryTransactionStore


# =============================================================================
# Test Fixtures
# =============================================================================

BASE_TIME = datetime(2024, 5, 10, 9, 30, tzinfo=timezone.utc)


def _sql_store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    session = sessionmaker(bind=engine)()
    return SqlTransactionStore(session), session


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        yield InMemoryTransactionStore()
        return
    sql_store, session = _sql_store()
    yield sql_store
    session.close()


def _record(minutes: int = 0, **overrides) -> TransactionRecord:
    values = dict(
        id=new_id(),
        fiat_amount=Decimal("1000"),
        fiat_rate=Decimal("7.5"),
        usdt_amount=Decimal("1500"),
        usdt_rate=Decimal("6.1"),
        created_at=BASE_TIME + timedelta(minutes=minutes),
        updated_at=BASE_TIME + timedelta(minutes=minutes),
    )
    values.update(overrides)
    return TransactionRecord(**values)


# =============================================================================
# Transactions
# =============================================================================

class TestTransactionRecords:

    def test_insert_assigns_sequence(self, store):
        first = store.insert(_record())
        second = store.insert(_record(minutes=1))

        assert first.sequence_id == 1
        assert second.sequence_id == 2
        assert store.get_by_sequence(2).id == second.id

    def test_round_trip_preserves_fields(self, store):
        record = _record(
            payment_method=PaymentMethod.BANK,
            settlement=HybridSettlement(bank_sell_rate=Decimal("6.5")),
            profit_figure=OverriddenProfit(Decimal("-12.34")),
            steps=ProgressSteps(fiat_acquired=True),
            status=TransactionStatus.IN_PROGRESS,
            is_private=False,
            notes="bank run",
            created_by="operator-1",
            kraken_fee=Decimal("0.26"),
        )
        store.insert(record)
        loaded = store.get(record.id)

        assert loaded.fiat_amount == Decimal("1000")
        assert loaded.settlement == HybridSettlement(bank_sell_rate=Decimal("6.5"))
        assert loaded.profit_figure == OverriddenProfit(Decimal("-12.34"))
        assert loaded.steps == ProgressSteps(fiat_acquired=True)
        assert loaded.status is TransactionStatus.IN_PROGRESS
        assert loaded.is_private is False
        assert loaded.notes == "bank run"
        assert loaded.kraken_fee == Decimal("0.26")
        assert loaded.created_at == record.created_at
        assert loaded.display_id == "BNK-1"

    def test_retained_round_trip(self, store):
        record = _record(
            settlement=RetainedSettlement(currency=RetainedCurrency.GBP),
            retained_amount_override=Decimal("200.5"),
        )
        store.insert(record)
        loaded = store.get(record.id)

        assert loaded.settlement == RetainedSettlement(currency=RetainedCurrency.GBP)
        assert loaded.retained_amount() == Decimal("200.5")

    def test_missing_returns_none(self, store):
        assert store.get("missing") is None
        assert store.get_by_sequence(42) is None

    def test_update_partial(self, store):
        record = store.insert(_record())
        updated = store.update(record.id, {"notes": "edited", "usdt_rate": Decimal("6.2")})

        assert updated.notes == "edited"
        assert updated.usdt_rate == Decimal("6.2")
        assert updated.sequence_id == record.sequence_id
        assert updated.updated_at > record.updated_at

    def test_update_immutable_field_rejected(self, store):
        record = store.insert(_record())
        with pytest.raises(LedgerValidationError) as exc_info:
            store.update(record.id, {"sequence_id": 9})
        assert exc_info.value.error_code == LedgerErrorCode.INVALID_FIELD

    def test_update_missing_raises(self, store):
        with pytest.raises(TransactionNotFoundError):
            store.update("missing", {"notes": "x"})

    def test_last_writer_wins(self, store):
        record = store.insert(_record())
        store.update(record.id, {"notes": "first"})
        store.update(record.id, {"notes": "second"})
        assert store.get(record.id).notes == "second"

    def test_delete(self, store):
        record = store.insert(_record())
        assert store.delete(record.id) is True
        assert store.delete(record.id) is False
        assert store.get(record.id) is None


# =============================================================================
# Listing / Filters
# =============================================================================

class TestListing:

    @pytest.fixture
    def seeded(self, store):
        store.insert(_record(minutes=0, payment_method=PaymentMethod.CASH))
        store.insert(_record(
            minutes=10,
            payment_method=PaymentMethod.BANK,
            is_private=False,
            status=TransactionStatus.COMPLETE,
        ))
        store.insert(_record(
            minutes=20,
            payment_method=PaymentMethod.BANK,
            settlement=HybridSettlement(bank_sell_rate=Decimal("6.5")),
            status=TransactionStatus.IN_PROGRESS,
        ))
        store.insert(_record(
            minutes=30,
            settlement=RetainedSettlement(),
            status=TransactionStatus.CANCELLED,
        ))
        return store

    def test_default_order_newest_first(self, seeded):
        assert [r.sequence_id for r in seeded.list()] == [4, 3, 2, 1]
        assert [r.sequence_id for r in seeded.list(ascending=True)] == [1, 2, 3, 4]

    def test_visibility(self, seeded):
        public = seeded.list(TransactionFilter(visibility=VisibilityFilter.PUBLIC))
        private = seeded.list(TransactionFilter(visibility=VisibilityFilter.PRIVATE))
        assert [r.sequence_id for r in public] == [2]
        assert len(private) == 3

    def test_payment_method_and_hybrid(self, seeded):
        bank = seeded.list(TransactionFilter(payment_method=PaymentMethodFilter.BANK))
        hybrid = seeded.list(TransactionFilter(payment_method=PaymentMethodFilter.HYBRID))
        assert [r.sequence_id for r in bank] == [3, 2]
        assert [r.sequence_id for r in hybrid] == [3]

    def test_status(self, seeded):
        active = seeded.list(TransactionFilter(status=StatusFilter.ACTIVE))
        done = seeded.list(TransactionFilter(status=StatusFilter.DONE))
        assert [r.sequence_id for r in active] == [3, 1]
        assert [r.sequence_id for r in done] == [2]

    def test_date_range(self, seeded):
        window = TransactionFilter(
            created_from=BASE_TIME + timedelta(minutes=5),
            created_to=BASE_TIME + timedelta(minutes=20),
        )
        assert [r.sequence_id for r in seeded.list(window)] == [3, 2]

    def test_retained_only(self, seeded):
        retained = seeded.list(TransactionFilter(retained_only=True))
        assert [r.sequence_id for r in retained] == [4]


# =============================================================================
# Audit
# =============================================================================

class TestAudit:

    def test_append_and_list(self, store):
        record = store.insert(_record())
        store.append_audit(AuditEntry(
            transaction_id=record.id,
            actor_id="operator-1",
            action=AuditAction.UPDATE,
            changes={"old": {"notes": None}, "new": {"notes": "x"}},
        ))
        entries = store.list_audit(record.id)

        assert len(entries) == 1
        assert entries[0].action is AuditAction.UPDATE
        assert entries[0].changes == {"old": {"notes": None}, "new": {"notes": "x"}}
        assert store.list_audit("other") == []


# =============================================================================
# Holders
# =============================================================================

class TestHolders:

    def test_insert_and_list_sorted(self, store):
        store.insert_holder(Holder(id=new_id(), name="Zaid"))
        store.insert_holder(Holder(id=new_id(), name="ahmed", is_investor=True))

        holders = store.list_holders()
        assert [h.name for h in holders] == ["ahmed", "Zaid"]
        assert holders[0].is_investor is True

    def test_duplicate_name_rejected(self, store):
        store.insert_holder(Holder(id=new_id(), name="Ali"))
        with pytest.raises(LedgerValidationError) as exc_info:
            store.insert_holder(Holder(id=new_id(), name="Ali"))
        assert exc_info.value.error_code == LedgerErrorCode.DUPLICATE_HOLDER

    def test_rename_to_existing_rejected(self, store):
        store.insert_holder(Holder(id=new_id(), name="Ali"))
        other = store.insert_holder(Holder(id=new_id(), name="Omar"))
        with pytest.raises(LedgerValidationError) as exc_info:
            store.update_holder(other.id, {"name": "Ali"})
        assert exc_info.value.error_code == LedgerErrorCode.DUPLICATE_HOLDER

    def test_update_missing_holder(self, store):
        with pytest.raises(HolderNotFoundError):
            store.update_holder("missing", {"is_investor": True})

    def test_delete_nulls_references_and_notes(self, store):
        holder = store.insert_holder(Holder(id=new_id(), name="Ali"))
        record = store.insert(_record(holder_id=holder.id))
        store.add_holder_note(HolderNote(id=new_id(), holder_id=holder.id, content="met"))

        assert store.delete_holder(holder.id) is True

        assert store.get(record.id).holder_id is None
        assert store.list_holder_notes(holder.id) == []
        assert store.delete_holder(holder.id) is False

    def test_notes_newest_first(self, store):
        holder = store.insert_holder(Holder(id=new_id(), name="Ali"))
        store.add_holder_note(HolderNote(
            id=new_id(), holder_id=holder.id, content="old",
            created_at=BASE_TIME,
        ))
        store.add_holder_note(HolderNote(
            id=new_id(), holder_id=holder.id, content="new",
            created_at=BASE_TIME + timedelta(hours=1),
        ))
        assert [n.content for n in store.list_holder_notes(holder.id)] == ["new", "old"]

    def test_note_for_missing_holder(self, store):
        with pytest.raises(HolderNotFoundError):
            store.add_holder_note(HolderNote(id=new_id(), holder_id="missing", content="x"))


# =============================================================================
# SQL failure handling
# =============================================================================

class TestSqlFailures:

    def test_write_failure_rolls_back(self):
        session = MagicMock()
        session.execute.side_effect = OperationalError("INSERT", {}, Exception("db down"))
        sql_store = SqlTransactionStore(session)

        with pytest.raises(LedgerStoreError) as exc_info:
            sql_store.insert(_record())

        assert exc_info.value.error_code == LedgerErrorCode.STORE_WRITE_FAIL
        session.rollback.assert_called_once()
        session.commit.assert_not_called()

    def test_unique_collision_on_insert_is_store_error(self):
        sql_store, session = _sql_store()
        record = _record()
        sql_store.insert(record)

        with pytest.raises(LedgerStoreError) as exc_info:
            sql_store.insert(record)
        session.close()

        assert exc_info.value.error_code == LedgerErrorCode.STORE_WRITE_FAIL

    def test_update_keeps_concurrent_change_to_other_column(self, monkeypatch):
        sql_store, session = _sql_store()
        record = sql_store.insert(_record())
        read_record = sql_store.get

        def read_then_other_writer(transaction_id):
            loaded = read_record(transaction_id)
            session.execute(
                text("UPDATE ledger_transactions SET notes = :notes WHERE id = :id"),
                {"notes": "other writer", "id": transaction_id},
            )
            session.commit()
            return loaded

        monkeypatch.setattr(sql_store, "get", read_then_other_writer)
        updated = sql_store.update(
            record.id,
            {"status": TransactionStatus.CANCELLED, "fiat_amount": Decimal("2000")},
        )
        row = session.execute(
            text("SELECT notes, status, profit FROM ledger_transactions WHERE id = :id"),
            {"id": record.id},
        ).mappings().one()
        session.close()

        assert updated.notes == "other writer"
        assert row["notes"] == "other writer"
        assert row["status"] == "cancelled"
        # 1500 * 6.1 - 2000 * 7.5
        assert row["profit"] == "-5850.00"

    def test_read_failure(self):
        session = MagicMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("db down"))

        with pytest.raises(LedgerStoreError) as exc_info:
            SqlTransactionStore(session).get("any")

        assert exc_info.value.error_code == LedgerErrorCode.STORE_READ_FAIL

    def test_cached_figures_written(self):
        sql_store, session = _sql_store()
        record = sql_store.insert(_record(settlement=RetainedSettlement()))
        row = session.execute(
            text(
                "SELECT profit, retained_amount FROM ledger_transactions WHERE id = :id"
            ),
            {"id": record.id},
        ).mappings().one()
        session.close()

        assert row["profit"] == "1650.00"
        assert row["retained_amount"] == "270.49180328"
