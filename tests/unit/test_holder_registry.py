"""
Unit Tests for HolderRegistry

Error Codes:
- TXN-VAL-002: Empty note content
- TXN-VAL-004: Duplicate holder name
- TXN-VAL-005: Holder name required
- TXN-NF-002: Holder not found
"""

from decimal import Decimal

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.holder_registry import HolderRegistry, normalize_holder_name
from services.ledger_errors import (
    HolderNotFoundError,
    LedgerErrorCode,
    LedgerValidationError,
)
from services.transaction_lifecycle import TransactionLifecycleManager
from services.transaction_store import InMemoryTransactionStore


@pytest.fixture
def store():
    return InMemoryTransactionStore()


@pytest.fixture
def registry(store):
    return HolderRegistry(store, actor_id="operator-1")


# =============================================================================
# Names
# =============================================================================

class TestHolderNames:

    def test_name_is_trimmed(self):
        assert normalize_holder_name("  Ahmed ") == "Ahmed"

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_empty_name_rejected(self, name):
        with pytest.raises(LedgerValidationError) as exc_info:
            normalize_holder_name(name)
        assert exc_info.value.error_code == LedgerErrorCode.HOLDER_NAME_REQUIRED

    def test_create_records_actor(self, registry):
        holder = registry.create_holder(" Ahmed ", is_investor=True)

        assert holder.name == "Ahmed"
        assert holder.is_investor is True
        assert holder.created_by == "operator-1"
        assert registry.get_holder(holder.id) == holder

    def test_duplicate_name_rejected(self, registry):
        registry.create_holder("Ahmed")
        with pytest.raises(LedgerValidationError) as exc_info:
            registry.create_holder("Ahmed ")
        assert exc_info.value.error_code == LedgerErrorCode.DUPLICATE_HOLDER
        assert len(registry.list_holders()) == 1

    def test_rename(self, registry):
        holder = registry.create_holder("Ahmed")
        renamed = registry.rename_holder(holder.id, "Ahmed B.")

        assert renamed.name == "Ahmed B."
        assert registry.get_holder(holder.id).name == "Ahmed B."

    def test_rename_to_existing_name_rejected(self, registry):
        registry.create_holder("Ahmed")
        other = registry.create_holder("Zaid")
        with pytest.raises(LedgerValidationError) as exc_info:
            registry.rename_holder(other.id, "Ahmed")
        assert exc_info.value.error_code == LedgerErrorCode.DUPLICATE_HOLDER

    def test_rename_to_blank_rejected(self, registry):
        holder = registry.create_holder("Ahmed")
        with pytest.raises(LedgerValidationError):
            registry.rename_holder(holder.id, "  ")
        assert registry.get_holder(holder.id).name == "Ahmed"

    def test_set_investor(self, registry):
        holder = registry.create_holder("Ahmed")
        assert registry.set_investor(holder.id, True).is_investor is True


# =============================================================================
# Lookup / Delete
# =============================================================================

class TestHolderLifecycle:

    def test_get_missing(self, registry):
        with pytest.raises(HolderNotFoundError) as exc_info:
            registry.get_holder("missing")
        assert exc_info.value.error_code == LedgerErrorCode.HOLDER_NOT_FOUND

    def test_delete_missing(self, registry):
        with pytest.raises(HolderNotFoundError):
            registry.delete_holder("missing")

    def test_delete_keeps_transactions(self, store, registry):
        holder = registry.create_holder("Ahmed")
        manager = TransactionLifecycleManager(store, actor_id="operator-1")
        record = manager.create_transaction(
            fiat_amount=Decimal("1000"),
            fiat_rate=Decimal("7.5"),
            usdt_amount=Decimal("1500"),
            usdt_rate=Decimal("6.1"),
            holder_id=holder.id,
        )

        registry.delete_holder(holder.id)

        assert registry.list_holders() == []
        assert manager.get_transaction(record.id).holder_id is None


# =============================================================================
# Notes
# =============================================================================

class TestHolderNotes:

    def test_add_and_list(self, registry):
        holder = registry.create_holder("Ahmed")
        note = registry.add_note(holder.id, "  owes 200 EUR ")

        assert note.content == "owes 200 EUR"
        assert note.created_by == "operator-1"
        assert [n.id for n in registry.list_notes(holder.id)] == [note.id]

    def test_empty_note_rejected(self, registry):
        holder = registry.create_holder("Ahmed")
        with pytest.raises(LedgerValidationError) as exc_info:
            registry.add_note(holder.id, "   ")
        assert exc_info.value.error_code == LedgerErrorCode.INVALID_FIELD
        assert registry.list_notes(holder.id) == []

    def test_note_for_missing_holder(self, registry):
        with pytest.raises(HolderNotFoundError):
            registry.add_note("missing", "hello")
        with pytest.raises(HolderNotFoundError):
            registry.list_notes("missing")
