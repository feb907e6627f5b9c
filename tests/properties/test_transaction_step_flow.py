"""
Property-Based Tests for the Transaction Step Flow

Tests TransactionLifecycleManager progress steps using Hypothesis.
Minimum 100 iterations per property.

Properties tested:
- Property 1: Completing all three steps reaches COMPLETE exactly once,
              whatever the order
- Property 2: The automatic flow never leaves a terminal status
- Property 3: A retained transaction without a holder cannot complete;
              the rejected change writes nothing
- Property 4: derive_status() never moves backwards

Error Codes:
- TXN-VAL-001: Holder required before a retained transaction can complete
"""

import itertools
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.holder_registry import HolderRegistry
from services.ledger_errors import LedgerErrorCode, LedgerValidationError
from services.transaction_lifecycle import (
    TERMINAL_STATUSES,
    TransactionLifecycleManager,
    derive_status,
)
from services.transaction_metrics import RetainedSettlement, StandardSettlement, HybridSettlement
from services.transaction_models import (
    AuditAction,
    ProgressStep,
    ProgressSteps,
    TransactionStatus,
)
from services.transaction_store import InMemoryTransactionStore


# =============================================================================
# HYPOTHESIS STRATEGIES
# =============================================================================

ALL_STEPS = list(ProgressStep)

step_order_strategy = st.sampled_from(list(itertools.permutations(ALL_STEPS)))

step_sequence_strategy = st.lists(
    st.tuples(st.sampled_from(ALL_STEPS), st.booleans()),
    min_size=1,
    max_size=12
)

steps_strategy = st.builds(
    ProgressSteps,
    fiat_acquired=st.booleans(),
    usdt_sold=st.booleans(),
    fiat_paid=st.booleans(),
)

status_strategy = st.sampled_from(list(TransactionStatus))

non_retained_settlement_strategy = st.sampled_from([
    StandardSettlement(),
    HybridSettlement(bank_sell_rate=Decimal('6.5')),
])


def _new_manager():
    return TransactionLifecycleManager(InMemoryTransactionStore(), actor_id="tester")


def _create(manager, settlement=None, holder_id=None):
    return manager.create_transaction(
        fiat_amount=Decimal('1000'),
        fiat_rate=Decimal('7.5'),
        usdt_amount=Decimal('1500'),
        usdt_rate=Decimal('6.1'),
        settlement=settlement,
        holder_id=holder_id,
    )


def _completions(manager, transaction_id):
    return [
        e for e in manager.list_audit(transaction_id)
        if e.action is AuditAction.UPDATE_PROGRESS
        and e.changes["old"]["status"] != TransactionStatus.COMPLETE.value
        and e.changes["new"]["status"] == TransactionStatus.COMPLETE.value
    ]


# =============================================================================
# PROPERTY TESTS
# =============================================================================

class TestCompletionExactlyOnce:
    """Property 1: order-independent completion."""

    @settings(max_examples=100)
    @given(order=step_order_strategy, settlement=non_retained_settlement_strategy)
    def test_any_order_completes_once(self, order, settlement):
        manager = _new_manager()
        record = _create(manager, settlement=settlement)

        for index, step in enumerate(order, start=1):
            record = manager.set_step(record.id, step, True)
            if index < len(order):
                assert record.status is TransactionStatus.IN_PROGRESS
            else:
                assert record.status is TransactionStatus.COMPLETE

        # Re-toggling after completion does not complete again
        record = manager.toggle_step(record.id, order[0])
        record = manager.toggle_step(record.id, order[0])

        assert record.status is TransactionStatus.COMPLETE
        assert len(_completions(manager, record.id)) == 1

    @settings(max_examples=100)
    @given(sequence=step_sequence_strategy)
    def test_status_matches_step_history(self, sequence):
        """COMPLETE iff all three steps were ever set together."""
        manager = _new_manager()
        record = _create(manager)
        reached_all = False
        any_set = False

        for step, value in sequence:
            record = manager.set_step(record.id, step, value)
            any_set = any_set or record.steps.any_done
            reached_all = reached_all or record.steps.all_done

        if reached_all:
            assert record.status is TransactionStatus.COMPLETE
        elif any_set:
            assert record.status is TransactionStatus.IN_PROGRESS
        else:
            assert record.status is TransactionStatus.PLANNED


class TestTerminalStatuses:
    """Property 2: terminal statuses are sticky for the step flow."""

    @settings(max_examples=100)
    @given(sequence=step_sequence_strategy)
    def test_cancelled_never_leaves(self, sequence):
        manager = _new_manager()
        record = _create(manager)
        manager.set_status(record.id, TransactionStatus.CANCELLED)

        for step, value in sequence:
            record = manager.set_step(record.id, step, value)
            assert record.status is TransactionStatus.CANCELLED


class TestHolderGuard:
    """Property 3: retained transactions need a holder to complete."""

    @settings(max_examples=100)
    @given(order=step_order_strategy)
    def test_completion_rejected_without_holder(self, order):
        manager = _new_manager()
        record = _create(manager, settlement=RetainedSettlement())

        for step in order[:2]:
            record = manager.set_step(record.id, step, True)
        before = manager.get_transaction(record.id)
        audit_before = len(manager.list_audit(record.id))

        with pytest.raises(LedgerValidationError) as exc_info:
            manager.set_step(record.id, order[2], True)

        assert exc_info.value.error_code == LedgerErrorCode.HOLDER_REQUIRED
        after = manager.get_transaction(record.id)
        assert after.steps == before.steps
        assert after.status is before.status
        assert after.updated_at == before.updated_at
        assert len(manager.list_audit(record.id)) == audit_before

    @settings(max_examples=100)
    @given(order=step_order_strategy)
    def test_completion_allowed_with_holder(self, order):
        store = InMemoryTransactionStore()
        manager = TransactionLifecycleManager(store, actor_id="tester")
        holder = HolderRegistry(store).create_holder("Ali")
        record = _create(manager, settlement=RetainedSettlement(), holder_id=holder.id)

        for step in order:
            record = manager.set_step(record.id, step, True)

        assert record.status is TransactionStatus.COMPLETE


class TestDeriveStatus:
    """Property 4: pure status derivation."""

    @settings(max_examples=100)
    @given(current=status_strategy, steps=steps_strategy)
    def test_never_regresses(self, current, steps):
        derived = derive_status(current, steps)

        if current in TERMINAL_STATUSES:
            assert derived is current
        elif current is TransactionStatus.IN_PROGRESS:
            assert derived in (TransactionStatus.IN_PROGRESS, TransactionStatus.COMPLETE)
        if steps.all_done and current not in TERMINAL_STATUSES:
            assert derived is TransactionStatus.COMPLETE
