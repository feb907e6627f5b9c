"""
============================================================================
Arbitrage Ledger - SQL Record Store
============================================================================

TransactionStore backed by SQLAlchemy raw SQL (text()) so the same queries
run against PostgreSQL in production and SQLite in tests.

STORAGE CONVENTIONS:
    - Decimals are stored as TEXT and parsed back through the decimal gateway
      (no float round-trip, identical on every backend)
    - Timestamps are stored as UTC ISO-8601 TEXT with microseconds, so string
      comparison equals chronological comparison
    - seq_id is assigned inside the INSERT as MAX(seq_id) + 1 and protected by
      a UNIQUE constraint; it never changes afterwards

FAILURE POLICY:
    Every write commits on success. On SQLAlchemyError the session is rolled
    back and LedgerStoreError (TXN-STORE-001/002) is raised; no retry.

============================================================================
"""

from datetime import datetime, timezone
from decimal import Decimal
from dataclasses import replace
from typing import Any, Dict, List, Optional
import json
import logging

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from services.decimal_gateway import coerce_decimal
from services.ledger_errors import (
    HolderNotFoundError,
    LedgerErrorCode,
    LedgerStoreError,
    TransactionNotFoundError,
)
from services.transaction_filters import PaymentMethodFilter, TransactionFilter, VisibilityFilter
from services.transaction_metrics import (
    SettlementKind,
    settlement_from_parts,
    settlement_to_parts,
)
from services.transaction_models import (
    AuditAction,
    AuditEntry,
    ComputedProfit,
    FiatCurrency,
    Holder,
    HolderNote,
    OverriddenProfit,
    PaymentMethod,
    ProgressSteps,
    TransactionRecord,
    TransactionStatus,
    utc_now,
)
from services.transaction_store import (
    UPDATABLE_HOLDER_FIELDS,
    UPDATABLE_TRANSACTION_FIELDS,
    TransactionStore,
    duplicate_holder_error,
    validate_partial,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Schema
# =============================================================================

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS ledger_holders (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        is_investor BOOLEAN NOT NULL DEFAULT FALSE,
        created_by TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_holder_notes (
        id TEXT PRIMARY KEY,
        holder_id TEXT NOT NULL,
        content TEXT NOT NULL,
        created_by TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_transactions (
        id TEXT PRIMARY KEY,
        seq_id INTEGER NOT NULL UNIQUE,
        fiat_currency TEXT NOT NULL,
        payment_method TEXT NOT NULL,
        fiat_amount TEXT NOT NULL,
        fiat_rate TEXT NOT NULL,
        usdt_amount TEXT NOT NULL,
        usdt_rate TEXT NOT NULL,
        settlement_mode TEXT NOT NULL,
        bank_sell_rate TEXT,
        retained_currency TEXT,
        profit_override TEXT,
        retained_amount_override TEXT,
        profit TEXT NOT NULL,
        retained_amount TEXT NOT NULL,
        status TEXT NOT NULL,
        step_fiat_acquired BOOLEAN NOT NULL DEFAULT FALSE,
        step_usdt_sold BOOLEAN NOT NULL DEFAULT FALSE,
        step_fiat_paid BOOLEAN NOT NULL DEFAULT FALSE,
        holder_id TEXT,
        is_private BOOLEAN NOT NULL DEFAULT TRUE,
        notes TEXT,
        created_by TEXT,
        forex_rate TEXT,
        crypto_rate TEXT,
        revolut_fee TEXT,
        kraken_fee TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_audit_log (
        id TEXT PRIMARY KEY,
        transaction_id TEXT NOT NULL,
        actor_id TEXT NOT NULL,
        action TEXT NOT NULL,
        changes TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_ledger_transactions_created_at "
    "ON ledger_transactions (created_at)",
    "CREATE INDEX IF NOT EXISTS idx_ledger_audit_log_transaction "
    "ON ledger_audit_log (transaction_id)",
)

TRANSACTION_COLUMNS = (
    "id, seq_id, fiat_currency, payment_method, fiat_amount, fiat_rate, "
    "usdt_amount, usdt_rate, settlement_mode, bank_sell_rate, retained_currency, "
    "profit_override, retained_amount_override, profit, retained_amount, status, "
    "step_fiat_acquired, step_usdt_sold, step_fiat_paid, holder_id, is_private, "
    "notes, created_by, forex_rate, crypto_rate, revolut_fee, kraken_fee, "
    "created_at, updated_at"
)

# Record attributes stored across several columns; every other updatable
# attribute maps to the column of the same name.
FIELD_COLUMNS = {
    "settlement": ("settlement_mode", "bank_sell_rate", "retained_currency"),
    "profit_figure": ("profit_override",),
    "steps": ("step_fiat_acquired", "step_usdt_sold", "step_fiat_paid"),
}

CACHED_COLUMNS = ("profit", "retained_amount", "updated_at")


def create_schema(bind: Any) -> None:
    """Create ledger tables if missing. bind is an Engine or Connection."""
    if hasattr(bind, "begin"):
        with bind.begin() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(text(statement))
    else:
        for statement in SCHEMA_STATEMENTS:
            bind.execute(text(statement))
    logger.info("[LEDGER-SQL] Schema ensured")


# =============================================================================
# Column conversion helpers
# =============================================================================

def _ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _parse_dec(value: Any) -> Optional[Decimal]:
    return coerce_decimal(value) if value is not None else None


def _transaction_params(record: TransactionRecord) -> Dict[str, Any]:
    parts = settlement_to_parts(record.settlement)
    cached = record.cached_figures()
    profit_override = (
        record.profit_figure.value
        if isinstance(record.profit_figure, OverriddenProfit) else None
    )
    return {
        "id": record.id,
        "fiat_currency": record.fiat_currency.value,
        "payment_method": record.payment_method.value,
        "fiat_amount": str(record.fiat_amount),
        "fiat_rate": str(record.fiat_rate),
        "usdt_amount": str(record.usdt_amount),
        "usdt_rate": str(record.usdt_rate),
        "settlement_mode": parts["settlement_mode"],
        "bank_sell_rate": _dec(parts["bank_sell_rate"]),
        "retained_currency": parts["retained_currency"],
        "profit_override": _dec(profit_override),
        "retained_amount_override": _dec(record.retained_amount_override),
        "profit": str(cached["profit"]),
        "retained_amount": str(cached["retained_amount"]),
        "status": record.status.value,
        "step_fiat_acquired": record.steps.fiat_acquired,
        "step_usdt_sold": record.steps.usdt_sold,
        "step_fiat_paid": record.steps.fiat_paid,
        "holder_id": record.holder_id,
        "is_private": record.is_private,
        "notes": record.notes,
        "created_by": record.created_by,
        "forex_rate": _dec(record.forex_rate),
        "crypto_rate": _dec(record.crypto_rate),
        "revolut_fee": _dec(record.revolut_fee),
        "kraken_fee": _dec(record.kraken_fee),
        "created_at": _ts(record.created_at),
        "updated_at": _ts(record.updated_at),
    }


def _row_to_transaction(row: Any) -> TransactionRecord:
    profit_override = _parse_dec(row["profit_override"])
    return TransactionRecord(
        id=str(row["id"]),
        sequence_id=int(row["seq_id"]),
        fiat_currency=FiatCurrency(row["fiat_currency"]),
        payment_method=PaymentMethod(row["payment_method"]),
        fiat_amount=coerce_decimal(row["fiat_amount"]),
        fiat_rate=coerce_decimal(row["fiat_rate"]),
        usdt_amount=coerce_decimal(row["usdt_amount"]),
        usdt_rate=coerce_decimal(row["usdt_rate"]),
        settlement=settlement_from_parts(
            row["settlement_mode"], row["bank_sell_rate"], row["retained_currency"]
        ),
        profit_figure=(
            OverriddenProfit(profit_override)
            if profit_override is not None else ComputedProfit()
        ),
        retained_amount_override=_parse_dec(row["retained_amount_override"]),
        status=TransactionStatus(row["status"]),
        steps=ProgressSteps(
            fiat_acquired=bool(row["step_fiat_acquired"]),
            usdt_sold=bool(row["step_usdt_sold"]),
            fiat_paid=bool(row["step_fiat_paid"]),
        ),
        holder_id=row["holder_id"],
        is_private=bool(row["is_private"]),
        notes=row["notes"],
        created_by=row["created_by"],
        forex_rate=_parse_dec(row["forex_rate"]),
        crypto_rate=_parse_dec(row["crypto_rate"]),
        revolut_fee=_parse_dec(row["revolut_fee"]),
        kraken_fee=_parse_dec(row["kraken_fee"]),
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _row_to_holder(row: Any) -> Holder:
    return Holder(
        id=str(row["id"]),
        name=row["name"],
        is_investor=bool(row["is_investor"]),
        created_by=row["created_by"],
        created_at=_parse_ts(row["created_at"]),
    )


# =============================================================================
# SqlTransactionStore
# =============================================================================

class SqlTransactionStore(TransactionStore):
    """
    SQL implementation of TransactionStore.

    Input Constraints: db_session is a SQLAlchemy Session whose schema was
                       created with create_schema()
    Side Effects: Database reads/writes, commit per write
    """

    def __init__(self, db_session: Any) -> None:
        self._db_session = db_session

    # -- plumbing ------------------------------------------------------------

    def _write(self, operation: str, statements: List[Any]) -> None:
        """Execute (query, params) pairs in one transaction."""
        try:
            for query, params in statements:
                self._db_session.execute(query, params)
            self._db_session.commit()
        except IntegrityError:
            self._db_session.rollback()
            raise
        except SQLAlchemyError as e:
            self._db_session.rollback()
            error_msg = f"Store write failed during {operation}: {e}"
            logger.error(f"[{LedgerErrorCode.STORE_WRITE_FAIL}] {error_msg}")
            raise LedgerStoreError(error_msg, LedgerErrorCode.STORE_WRITE_FAIL) from e

    def _conflict(self, operation: str, transaction_id: str, error: Exception) -> LedgerStoreError:
        """Unique-key collision on a transaction row (e.g. two inserts racing for seq_id)."""
        error_msg = (
            f"Store write conflict during {operation} | transaction_id={transaction_id} | "
            f"error={str(error)[:200]}"
        )
        logger.error(f"[{LedgerErrorCode.STORE_WRITE_FAIL}] {error_msg}")
        return LedgerStoreError(error_msg, LedgerErrorCode.STORE_WRITE_FAIL)

    def _read(self, operation: str, query: Any, params: Dict[str, Any]) -> List[Any]:
        try:
            return list(self._db_session.execute(query, params).mappings())
        except SQLAlchemyError as e:
            self._db_session.rollback()
            error_msg = f"Store read failed during {operation}: {e}"
            logger.error(f"[{LedgerErrorCode.STORE_READ_FAIL}] {error_msg}")
            raise LedgerStoreError(error_msg, LedgerErrorCode.STORE_READ_FAIL) from e

    # -- transactions --------------------------------------------------------

    def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        rows = self._read(
            "get",
            text(f"SELECT {TRANSACTION_COLUMNS} FROM ledger_transactions WHERE id = :id"),
            {"id": transaction_id},
        )
        return _row_to_transaction(rows[0]) if rows else None

    def get_by_sequence(self, sequence_id: int) -> Optional[TransactionRecord]:
        rows = self._read(
            "get_by_sequence",
            text(f"SELECT {TRANSACTION_COLUMNS} FROM ledger_transactions WHERE seq_id = :seq_id"),
            {"seq_id": int(sequence_id)},
        )
        return _row_to_transaction(rows[0]) if rows else None

    def list(
        self,
        transaction_filter: Optional[TransactionFilter] = None,
        ascending: bool = False
    ) -> List[TransactionRecord]:
        transaction_filter = transaction_filter or TransactionFilter()
        clauses: List[str] = []
        params: Dict[str, Any] = {}

        if transaction_filter.visibility is not VisibilityFilter.ALL:
            clauses.append("is_private = :is_private")
            params["is_private"] = transaction_filter.visibility is VisibilityFilter.PRIVATE

        if transaction_filter.payment_method is PaymentMethodFilter.HYBRID:
            clauses.append("settlement_mode = :hybrid_mode")
            params["hybrid_mode"] = SettlementKind.HYBRID.value
        elif transaction_filter.payment_method is not PaymentMethodFilter.ALL:
            clauses.append("payment_method = :payment_method")
            params["payment_method"] = transaction_filter.payment_method.value

        statuses = transaction_filter.status_values()
        if statuses is not None:
            names = []
            for index, status in enumerate(statuses):
                names.append(f":status_{index}")
                params[f"status_{index}"] = status.value
            clauses.append(f"status IN ({', '.join(names)})")

        if transaction_filter.created_from is not None:
            clauses.append("created_at >= :created_from")
            params["created_from"] = _ts(transaction_filter.created_from)
        if transaction_filter.created_to is not None:
            clauses.append("created_at <= :created_to")
            params["created_to"] = _ts(transaction_filter.created_to)

        if transaction_filter.holder_id is not None:
            clauses.append("holder_id = :holder_id")
            params["holder_id"] = transaction_filter.holder_id
        if transaction_filter.retained_only:
            clauses.append("settlement_mode = :retained_mode")
            params["retained_mode"] = SettlementKind.RETAINED.value

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        direction = "ASC" if ascending else "DESC"
        query = text(
            f"SELECT {TRANSACTION_COLUMNS} FROM ledger_transactions {where} "
            f"ORDER BY created_at {direction}, seq_id {direction}"
        )
        return [_row_to_transaction(row) for row in self._read("list", query, params)]

    def insert(self, record: TransactionRecord) -> TransactionRecord:
        params = _transaction_params(record)
        columns = [c.strip() for c in TRANSACTION_COLUMNS.split(",") if c.strip() != "seq_id"]
        query = text(
            f"INSERT INTO ledger_transactions (seq_id, {', '.join(columns)}) VALUES ("
            f"(SELECT COALESCE(MAX(seq_id), 0) + 1 FROM ledger_transactions), "
            f"{', '.join(':' + c for c in columns)})"
        )
        try:
            self._write("insert", [(query, params)])
        except IntegrityError as e:
            raise self._conflict("insert", record.id, e) from e
        stored = self.get(record.id)
        if stored is None:
            raise LedgerStoreError(
                f"Inserted transaction vanished: {record.id}",
                LedgerErrorCode.STORE_READ_FAIL,
            )
        return stored

    def update(self, transaction_id: str, partial: Dict[str, Any]) -> TransactionRecord:
        validate_partial(partial, UPDATABLE_TRANSACTION_FIELDS)
        current = self.get(transaction_id)
        if current is None:
            raise TransactionNotFoundError(transaction_id)

        changes = dict(partial)
        changes.setdefault("updated_at", utc_now())
        updated = replace(current, **changes)

        # Only the touched columns plus the derived caches; a concurrent
        # writer's change to any other column survives.
        params = _transaction_params(updated)
        columns = set(CACHED_COLUMNS)
        for field_name in changes:
            columns.update(FIELD_COLUMNS.get(field_name, (field_name,)))
        assignments = ", ".join(f"{column} = :{column}" for column in sorted(columns))
        query = text(f"UPDATE ledger_transactions SET {assignments} WHERE id = :id")
        try:
            self._write("update", [(query, {c: params[c] for c in columns | {"id"}})])
        except IntegrityError as e:
            raise self._conflict("update", transaction_id, e) from e
        stored = self.get(transaction_id)
        if stored is None:
            raise TransactionNotFoundError(transaction_id)
        return stored

    def delete(self, transaction_id: str) -> bool:
        if self.get(transaction_id) is None:
            return False
        self._write("delete", [(
            text("DELETE FROM ledger_transactions WHERE id = :id"),
            {"id": transaction_id},
        )])
        return True

    # -- audit ---------------------------------------------------------------

    def append_audit(self, entry: AuditEntry) -> None:
        self._write("append_audit", [(
            text(
                "INSERT INTO ledger_audit_log "
                "(id, transaction_id, actor_id, action, changes, created_at) "
                "VALUES (:id, :transaction_id, :actor_id, :action, :changes, :created_at)"
            ),
            {
                "id": entry.id,
                "transaction_id": entry.transaction_id,
                "actor_id": entry.actor_id,
                "action": entry.action.value,
                "changes": json.dumps(entry.changes, sort_keys=True, default=str),
                "created_at": _ts(entry.created_at),
            },
        )])

    def list_audit(self, transaction_id: str) -> List[AuditEntry]:
        rows = self._read(
            "list_audit",
            text(
                "SELECT id, transaction_id, actor_id, action, changes, created_at "
                "FROM ledger_audit_log WHERE transaction_id = :transaction_id "
                "ORDER BY created_at ASC"
            ),
            {"transaction_id": transaction_id},
        )
        return [
            AuditEntry(
                id=str(row["id"]),
                transaction_id=str(row["transaction_id"]),
                actor_id=row["actor_id"],
                action=AuditAction(row["action"]),
                changes=json.loads(row["changes"]),
                created_at=_parse_ts(row["created_at"]),
            )
            for row in rows
        ]

    # -- holders -------------------------------------------------------------

    def get_holder(self, holder_id: str) -> Optional[Holder]:
        rows = self._read(
            "get_holder",
            text(
                "SELECT id, name, is_investor, created_by, created_at "
                "FROM ledger_holders WHERE id = :id"
            ),
            {"id": holder_id},
        )
        return _row_to_holder(rows[0]) if rows else None

    def list_holders(self) -> List[Holder]:
        rows = self._read(
            "list_holders",
            text(
                "SELECT id, name, is_investor, created_by, created_at "
                "FROM ledger_holders ORDER BY LOWER(name) ASC"
            ),
            {},
        )
        return [_row_to_holder(row) for row in rows]

    def insert_holder(self, holder: Holder) -> Holder:
        try:
            self._write("insert_holder", [(
                text(
                    "INSERT INTO ledger_holders (id, name, is_investor, created_by, created_at) "
                    "VALUES (:id, :name, :is_investor, :created_by, :created_at)"
                ),
                {
                    "id": holder.id,
                    "name": holder.name,
                    "is_investor": holder.is_investor,
                    "created_by": holder.created_by,
                    "created_at": _ts(holder.created_at),
                },
            )])
        except IntegrityError as e:
            raise duplicate_holder_error(holder.name) from e
        return holder

    def update_holder(self, holder_id: str, partial: Dict[str, Any]) -> Holder:
        validate_partial(partial, UPDATABLE_HOLDER_FIELDS)
        current = self.get_holder(holder_id)
        if current is None:
            raise HolderNotFoundError(holder_id)
        updated = replace(current, **partial)
        try:
            self._write("update_holder", [(
                text(
                    "UPDATE ledger_holders SET name = :name, is_investor = :is_investor "
                    "WHERE id = :id"
                ),
                {"id": holder_id, "name": updated.name, "is_investor": updated.is_investor},
            )])
        except IntegrityError as e:
            raise duplicate_holder_error(updated.name) from e
        return updated

    def delete_holder(self, holder_id: str) -> bool:
        if self.get_holder(holder_id) is None:
            return False
        self._write("delete_holder", [
            (
                text(
                    "UPDATE ledger_transactions SET holder_id = NULL, updated_at = :now "
                    "WHERE holder_id = :id"
                ),
                {"id": holder_id, "now": _ts(utc_now())},
            ),
            (text("DELETE FROM ledger_holder_notes WHERE holder_id = :id"), {"id": holder_id}),
            (text("DELETE FROM ledger_holders WHERE id = :id"), {"id": holder_id}),
        ])
        return True

    def add_holder_note(self, note: HolderNote) -> HolderNote:
        if self.get_holder(note.holder_id) is None:
            raise HolderNotFoundError(note.holder_id)
        self._write("add_holder_note", [(
            text(
                "INSERT INTO ledger_holder_notes (id, holder_id, content, created_by, created_at) "
                "VALUES (:id, :holder_id, :content, :created_by, :created_at)"
            ),
            {
                "id": note.id,
                "holder_id": note.holder_id,
                "content": note.content,
                "created_by": note.created_by,
                "created_at": _ts(note.created_at),
            },
        )])
        return note

    def list_holder_notes(self, holder_id: str) -> List[HolderNote]:
        rows = self._read(
            "list_holder_notes",
            text(
                "SELECT id, holder_id, content, created_by, created_at "
                "FROM ledger_holder_notes WHERE holder_id = :holder_id "
                "ORDER BY created_at DESC"
            ),
            {"holder_id": holder_id},
        )
        return [
            HolderNote(
                id=str(row["id"]),
                holder_id=str(row["holder_id"]),
                content=row["content"],
                created_by=row["created_by"],
                created_at=_parse_ts(row["created_at"]),
            )
            for row in rows
        ]


__all__ = [
    "SCHEMA_STATEMENTS",
    "create_schema",
    "SqlTransactionStore",
]
