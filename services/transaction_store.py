"""
============================================================================
Arbitrage Ledger - Record Store
============================================================================

Generic persistent-record store consumed by the lifecycle manager, the holder
registry and the reporting layer.

INTERFACE:
    get(id) / get_by_sequence(seq) / list(filter)
    insert(record) / update(id, partial) / delete(id)
    append_audit(entry) / list_audit(transaction_id)
    holder + holder-note CRUD

CONCURRENCY:
    No optimistic-concurrency checks. Each update() is an independent
    read-modify-write; the last writer wins.

REFERENTIAL POLICY:
    Holders are weak references. delete_holder() nulls out holder_id on every
    transaction that referenced it; transactions are never cascade-deleted.

ERROR CODES:
    - TXN-NF-001: Transaction not found
    - TXN-NF-002: Holder not found
    - TXN-VAL-002: Unknown or immutable field in partial update
    - TXN-VAL-004: Duplicate holder name

============================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import fields, replace
from typing import Any, Dict, List, Optional
import logging
import threading

from services.ledger_errors import (
    HolderNotFoundError,
    LedgerErrorCode,
    LedgerValidationError,
    TransactionNotFoundError,
)
from services.transaction_filters import TransactionFilter
from services.transaction_models import (
    AuditEntry,
    Holder,
    HolderNote,
    TransactionRecord,
    utc_now,
)

logger = logging.getLogger(__name__)


IMMUTABLE_TRANSACTION_FIELDS = frozenset({"id", "sequence_id", "created_by"})
UPDATABLE_TRANSACTION_FIELDS = frozenset(
    f.name for f in fields(TransactionRecord)
) - IMMUTABLE_TRANSACTION_FIELDS

UPDATABLE_HOLDER_FIELDS = frozenset({"name", "is_investor"})


def validate_partial(partial: Dict[str, Any], allowed: frozenset) -> None:
    unknown = sorted(set(partial) - allowed)
    if unknown:
        raise LedgerValidationError(
            f"Fields cannot be updated: {', '.join(unknown)}",
            LedgerErrorCode.INVALID_FIELD,
            field_name=unknown[0],
        )


def duplicate_holder_error(name: str) -> LedgerValidationError:
    return LedgerValidationError(
        f"A holder named '{name}' already exists",
        LedgerErrorCode.DUPLICATE_HOLDER,
        field_name="name",
    )


class TransactionStore(ABC):
    """Abstract record store."""

    # -- transactions --------------------------------------------------------

    @abstractmethod
    def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        ...

    @abstractmethod
    def get_by_sequence(self, sequence_id: int) -> Optional[TransactionRecord]:
        ...

    @abstractmethod
    def list(
        self,
        transaction_filter: Optional[TransactionFilter] = None,
        ascending: bool = False
    ) -> List[TransactionRecord]:
        """Records matching the filter, ordered by created_at."""

    @abstractmethod
    def insert(self, record: TransactionRecord) -> TransactionRecord:
        """Persist a new record and return it with its sequence_id assigned."""

    @abstractmethod
    def update(self, transaction_id: str, partial: Dict[str, Any]) -> TransactionRecord:
        """Apply a partial update and return the stored record."""

    @abstractmethod
    def delete(self, transaction_id: str) -> bool:
        ...

    # -- audit ---------------------------------------------------------------

    @abstractmethod
    def append_audit(self, entry: AuditEntry) -> None:
        ...

    @abstractmethod
    def list_audit(self, transaction_id: str) -> List[AuditEntry]:
        ...

    # -- holders -------------------------------------------------------------

    @abstractmethod
    def get_holder(self, holder_id: str) -> Optional[Holder]:
        ...

    @abstractmethod
    def list_holders(self) -> List[Holder]:
        """All holders ordered by name."""

    @abstractmethod
    def insert_holder(self, holder: Holder) -> Holder:
        ...

    @abstractmethod
    def update_holder(self, holder_id: str, partial: Dict[str, Any]) -> Holder:
        ...

    @abstractmethod
    def delete_holder(self, holder_id: str) -> bool:
        ...

    @abstractmethod
    def add_holder_note(self, note: HolderNote) -> HolderNote:
        ...

    @abstractmethod
    def list_holder_notes(self, holder_id: str) -> List[HolderNote]:
        """Notes for a holder, newest first."""


class InMemoryTransactionStore(TransactionStore):
    """
    Thread-safe in-memory store.

    Records are copied on the way in and out, so no caller can mutate stored
    state without going through update().
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, TransactionRecord] = {}
        self._audit: List[AuditEntry] = []
        self._holders: Dict[str, Holder] = {}
        self._notes: List[HolderNote] = []
        self._next_sequence = 1

    # -- transactions --------------------------------------------------------

    def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        with self._lock:
            record = self._records.get(transaction_id)
            return replace(record) if record is not None else None

    def get_by_sequence(self, sequence_id: int) -> Optional[TransactionRecord]:
        with self._lock:
            for record in self._records.values():
                if record.sequence_id == sequence_id:
                    return replace(record)
        return None

    def list(
        self,
        transaction_filter: Optional[TransactionFilter] = None,
        ascending: bool = False
    ) -> List[TransactionRecord]:
        transaction_filter = transaction_filter or TransactionFilter()
        with self._lock:
            matches = [
                replace(record) for record in self._records.values()
                if transaction_filter.matches(record)
            ]
        matches.sort(key=lambda r: (r.created_at, r.sequence_id or 0), reverse=not ascending)
        return matches

    def insert(self, record: TransactionRecord) -> TransactionRecord:
        with self._lock:
            stored = replace(record, sequence_id=self._next_sequence)
            self._next_sequence += 1
            self._records[stored.id] = stored
            return replace(stored)

    def update(self, transaction_id: str, partial: Dict[str, Any]) -> TransactionRecord:
        validate_partial(partial, UPDATABLE_TRANSACTION_FIELDS)
        with self._lock:
            current = self._records.get(transaction_id)
            if current is None:
                raise TransactionNotFoundError(transaction_id)
            changes = dict(partial)
            changes.setdefault("updated_at", utc_now())
            stored = replace(current, **changes)
            self._records[transaction_id] = stored
            return replace(stored)

    def delete(self, transaction_id: str) -> bool:
        with self._lock:
            return self._records.pop(transaction_id, None) is not None

    # -- audit ---------------------------------------------------------------

    def append_audit(self, entry: AuditEntry) -> None:
        with self._lock:
            self._audit.append(entry)

    def list_audit(self, transaction_id: str) -> List[AuditEntry]:
        with self._lock:
            return [e for e in self._audit if e.transaction_id == transaction_id]

    # -- holders -------------------------------------------------------------

    def get_holder(self, holder_id: str) -> Optional[Holder]:
        with self._lock:
            holder = self._holders.get(holder_id)
            return replace(holder) if holder is not None else None

    def list_holders(self) -> List[Holder]:
        with self._lock:
            holders = [replace(h) for h in self._holders.values()]
        return sorted(holders, key=lambda h: h.name.lower())

    def insert_holder(self, holder: Holder) -> Holder:
        with self._lock:
            if any(h.name == holder.name for h in self._holders.values()):
                raise duplicate_holder_error(holder.name)
            self._holders[holder.id] = replace(holder)
            return replace(holder)

    def update_holder(self, holder_id: str, partial: Dict[str, Any]) -> Holder:
        validate_partial(partial, UPDATABLE_HOLDER_FIELDS)
        with self._lock:
            current = self._holders.get(holder_id)
            if current is None:
                raise HolderNotFoundError(holder_id)
            new_name = partial.get("name")
            if new_name is not None and any(
                h.name == new_name and h.id != holder_id for h in self._holders.values()
            ):
                raise duplicate_holder_error(new_name)
            stored = replace(current, **partial)
            self._holders[holder_id] = stored
            return replace(stored)

    def delete_holder(self, holder_id: str) -> bool:
        with self._lock:
            if self._holders.pop(holder_id, None) is None:
                return False
            for transaction_id, record in list(self._records.items()):
                if record.holder_id == holder_id:
                    self._records[transaction_id] = replace(
                        record, holder_id=None, updated_at=utc_now()
                    )
            self._notes = [n for n in self._notes if n.holder_id != holder_id]
            return True

    def add_holder_note(self, note: HolderNote) -> HolderNote:
        with self._lock:
            if note.holder_id not in self._holders:
                raise HolderNotFoundError(note.holder_id)
            self._notes.append(replace(note))
            return replace(note)

    def list_holder_notes(self, holder_id: str) -> List[HolderNote]:
        with self._lock:
            notes = [replace(n) for n in self._notes if n.holder_id == holder_id]
        return sorted(notes, key=lambda n: n.created_at, reverse=True)


__all__ = [
    "IMMUTABLE_TRANSACTION_FIELDS",
    "UPDATABLE_TRANSACTION_FIELDS",
    "UPDATABLE_HOLDER_FIELDS",
    "validate_partial",
    "TransactionStore",
    "InMemoryTransactionStore",
]
