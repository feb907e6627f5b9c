"""
Unit Tests for Transaction Filters

Covers date-range presets, TransactionFilter.matches() and the persisted
filter selections.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.transaction_filters import (
    FILTER_STORAGE_KEY,
    DatePreset,
    FilterPreferences,
    FilterState,
    InMemoryKeyValueStore,
    PaymentMethodFilter,
    StatusFilter,
    TransactionFilter,
    VisibilityFilter,
    resolve_date_range,
)
from services.transaction_metrics import HybridSettlement, RetainedSettlement
from services.transaction_models import PaymentMethod, TransactionRecord, TransactionStatus


# Wednesday
NOW = datetime(2024, 5, 15, 14, 45, tzinfo=timezone.utc)


def _record(**overrides) -> TransactionRecord:
    values = dict(
        id="txn-1",
        fiat_amount=Decimal("1000"),
        fiat_rate=Decimal("7.5"),
        usdt_amount=Decimal("1500"),
        usdt_rate=Decimal("6.1"),
        created_at=NOW,
    )
    values.update(overrides)
    return TransactionRecord(**values)


# =============================================================================
# Date Presets
# =============================================================================

class TestResolveDateRange:

    def test_all_is_open(self):
        assert resolve_date_range(DatePreset.ALL, now=NOW) == (None, None)

    def test_today(self):
        start, end = resolve_date_range(DatePreset.TODAY, now=NOW)
        assert start == datetime(2024, 5, 15, tzinfo=timezone.utc)
        assert end == datetime(2024, 5, 15, 23, 59, 59, 999999, tzinfo=timezone.utc)

    def test_yesterday(self):
        start, end = resolve_date_range(DatePreset.YESTERDAY, now=NOW)
        assert start == datetime(2024, 5, 14, tzinfo=timezone.utc)
        assert end.date() == datetime(2024, 5, 14).date()

    def test_this_week_starts_monday(self):
        start, end = resolve_date_range(DatePreset.THIS_WEEK, now=NOW)
        assert start == datetime(2024, 5, 13, tzinfo=timezone.utc)
        assert end == datetime(2024, 5, 19, 23, 59, 59, 999999, tzinfo=timezone.utc)

    def test_last_week(self):
        start, end = resolve_date_range(DatePreset.LAST_WEEK, now=NOW)
        assert start == datetime(2024, 5, 6, tzinfo=timezone.utc)
        assert end.date() == datetime(2024, 5, 12).date()

    def test_this_month(self):
        start, end = resolve_date_range(DatePreset.THIS_MONTH, now=NOW)
        assert start == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert end == datetime(2024, 5, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)

    def test_last_month_across_year(self):
        start, end = resolve_date_range(
            DatePreset.LAST_MONTH, now=datetime(2024, 1, 10, tzinfo=timezone.utc)
        )
        assert start == datetime(2023, 12, 1, tzinfo=timezone.utc)
        assert end.date() == datetime(2023, 12, 31).date()

    def test_last_month_leap_february(self):
        start, end = resolve_date_range(
            DatePreset.LAST_MONTH, now=datetime(2024, 3, 31, tzinfo=timezone.utc)
        )
        assert start == datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert end.date() == datetime(2024, 2, 29).date()

    def test_custom_widens_to_whole_days(self):
        start, end = resolve_date_range(
            DatePreset.CUSTOM,
            now=NOW,
            custom_start=datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
            custom_end=datetime(2024, 5, 3, 8, 0, tzinfo=timezone.utc),
        )
        assert start == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert end == datetime(2024, 5, 3, 23, 59, 59, 999999, tzinfo=timezone.utc)

    def test_custom_open_side(self):
        start, end = resolve_date_range(
            DatePreset.CUSTOM, now=NOW, custom_start=datetime(2024, 5, 1, tzinfo=timezone.utc)
        )
        assert start == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert end is None

    def test_accepts_string_preset(self):
        assert resolve_date_range("today", now=NOW)[0] == datetime(2024, 5, 15, tzinfo=timezone.utc)


# =============================================================================
# TransactionFilter.matches
# =============================================================================

class TestTransactionFilterMatches:

    def test_default_matches_everything(self):
        assert TransactionFilter().matches(_record())
        assert TransactionFilter().matches(_record(status=TransactionStatus.CANCELLED))

    def test_visibility(self):
        private = _record(is_private=True)
        public = _record(is_private=False)

        assert TransactionFilter(visibility=VisibilityFilter.PRIVATE).matches(private)
        assert not TransactionFilter(visibility=VisibilityFilter.PRIVATE).matches(public)
        assert TransactionFilter(visibility=VisibilityFilter.PUBLIC).matches(public)
        assert not TransactionFilter(visibility=VisibilityFilter.PUBLIC).matches(private)

    def test_payment_method(self):
        cash = _record(payment_method=PaymentMethod.CASH)
        bank = _record(payment_method=PaymentMethod.BANK)

        assert TransactionFilter(payment_method=PaymentMethodFilter.CASH).matches(cash)
        assert not TransactionFilter(payment_method=PaymentMethodFilter.CASH).matches(bank)
        assert TransactionFilter(payment_method=PaymentMethodFilter.BANK).matches(bank)

    def test_hybrid_is_a_settlement_mode(self):
        hybrid_cash = _record(
            payment_method=PaymentMethod.CASH,
            settlement=HybridSettlement(bank_sell_rate=Decimal("6.5")),
        )
        plain = _record()
        hybrid_filter = TransactionFilter(payment_method=PaymentMethodFilter.HYBRID)

        assert hybrid_filter.matches(hybrid_cash)
        assert not hybrid_filter.matches(plain)

    @pytest.mark.parametrize("status,active,done", [
        (TransactionStatus.PLANNED, True, False),
        (TransactionStatus.IN_PROGRESS, True, False),
        (TransactionStatus.COMPLETE, False, True),
        (TransactionStatus.CANCELLED, False, False),
    ])
    def test_status(self, status, active, done):
        record = _record(status=status)
        assert TransactionFilter(status=StatusFilter.ACTIVE).matches(record) is active
        assert TransactionFilter(status=StatusFilter.DONE).matches(record) is done

    def test_date_bounds_inclusive(self):
        f = TransactionFilter.for_preset(DatePreset.TODAY, now=NOW)

        assert f.matches(_record(created_at=datetime(2024, 5, 15, tzinfo=timezone.utc)))
        assert f.matches(
            _record(created_at=datetime(2024, 5, 15, 23, 59, 59, 999999, tzinfo=timezone.utc))
        )
        assert not f.matches(_record(created_at=NOW - timedelta(days=1)))
        assert not f.matches(_record(created_at=NOW + timedelta(days=1)))

    def test_holder_and_retained(self):
        retained = _record(settlement=RetainedSettlement(), holder_id="h-1")

        assert TransactionFilter(holder_id="h-1").matches(retained)
        assert not TransactionFilter(holder_id="h-2").matches(retained)
        assert TransactionFilter(retained_only=True).matches(retained)
        assert not TransactionFilter(retained_only=True).matches(_record())

    def test_for_preset_passes_other_dimensions(self):
        f = TransactionFilter.for_preset(DatePreset.ALL, status=StatusFilter.DONE)
        assert f.status is StatusFilter.DONE
        assert f.created_from is None


# =============================================================================
# Persisted Selections
# =============================================================================

class TestFilterPreferences:

    def test_defaults_when_nothing_saved(self):
        state = FilterPreferences(InMemoryKeyValueStore()).load()

        assert state == FilterState()
        assert state.date_preset is DatePreset.TODAY
        assert state.dashboard_status is StatusFilter.DONE

    def test_save_then_load(self):
        store = InMemoryKeyValueStore()
        prefs = FilterPreferences(store)
        state = FilterState(
            visibility=VisibilityFilter.PUBLIC,
            payment_method=PaymentMethodFilter.HYBRID,
            date_preset=DatePreset.LAST_MONTH,
        )
        prefs.save(state)

        assert store.get(FILTER_STORAGE_KEY) is not None
        assert prefs.load() == state

    def test_unreadable_state_falls_back(self, caplog):
        store = InMemoryKeyValueStore({FILTER_STORAGE_KEY: '{"visibility": "secret"}'})
        state = FilterPreferences(store).load()

        assert state == FilterState()
        assert "Failed to load saved filters" in caplog.text

    def test_malformed_json_falls_back(self):
        store = InMemoryKeyValueStore({FILTER_STORAGE_KEY: "{not json"})
        assert FilterPreferences(store).load() == FilterState()

    def test_dashboard_filter_uses_dashboard_status(self):
        state = FilterState(status=StatusFilter.ALL, date_preset=DatePreset.ALL)

        assert state.to_filter(now=NOW).status is StatusFilter.ALL
        assert state.to_filter(now=NOW, for_dashboard=True).status is StatusFilter.DONE
