"""
============================================================================
Arbitrage Ledger - Transaction Filters
============================================================================

Filters are explicit configuration objects passed into each query; nothing
is read from ambient global state. A caller that wants its selections to
survive a restart hands FilterPreferences an injected KeyValueStore.

FILTER DIMENSIONS:
    visibility      all | private | public
    payment_method  all | cash | bank | hybrid   (hybrid = settlement mode)
    status          all | active | done           (active = planned + in_progress)
    created_at      preset date range, see DatePreset

============================================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Dict, Optional, Tuple
import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from services.transaction_models import (
    PaymentMethod,
    TransactionRecord,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

FILTER_STORAGE_KEY = "arbitrage_filters"


# =============================================================================
# Enums
# =============================================================================

class VisibilityFilter(str, Enum):
    ALL = "all"
    PRIVATE = "private"
    PUBLIC = "public"


class PaymentMethodFilter(str, Enum):
    ALL = "all"
    CASH = "cash"
    BANK = "bank"
    HYBRID = "hybrid"


class StatusFilter(str, Enum):
    ALL = "all"
    ACTIVE = "active"
    DONE = "done"


class DatePreset(str, Enum):
    ALL = "all"
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "this_week"
    LAST_WEEK = "last_week"
    THIS_MONTH = "this_month"
    LAST_MONTH = "last_month"
    CUSTOM = "custom"


ACTIVE_STATUSES = (TransactionStatus.PLANNED, TransactionStatus.IN_PROGRESS)


# =============================================================================
# Date ranges
# =============================================================================

def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _end_of_day(moment: datetime) -> datetime:
    return _start_of_day(moment) + timedelta(days=1) - timedelta(microseconds=1)


def _start_of_month(moment: datetime) -> datetime:
    return _start_of_day(moment).replace(day=1)


def _end_of_month(moment: datetime) -> datetime:
    start = _start_of_month(moment)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return next_month - timedelta(microseconds=1)


def resolve_date_range(
    preset: DatePreset,
    now: Optional[datetime] = None,
    custom_start: Optional[datetime] = None,
    custom_end: Optional[datetime] = None,
    tz: tzinfo = timezone.utc
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Resolve a preset to an inclusive (start, end) range.

    Weeks start on Monday. Custom bounds are widened to whole days; either
    side may be open (None).
    """
    now = (now or datetime.now(tz)).astimezone(tz)
    preset = DatePreset(preset)

    if preset is DatePreset.TODAY:
        return _start_of_day(now), _end_of_day(now)
    if preset is DatePreset.YESTERDAY:
        yesterday = now - timedelta(days=1)
        return _start_of_day(yesterday), _end_of_day(yesterday)
    if preset is DatePreset.THIS_WEEK:
        monday = now - timedelta(days=now.weekday())
        return _start_of_day(monday), _end_of_day(monday + timedelta(days=6))
    if preset is DatePreset.LAST_WEEK:
        monday = now - timedelta(days=now.weekday() + 7)
        return _start_of_day(monday), _end_of_day(monday + timedelta(days=6))
    if preset is DatePreset.THIS_MONTH:
        return _start_of_month(now), _end_of_month(now)
    if preset is DatePreset.LAST_MONTH:
        last_month = _start_of_month(now) - timedelta(days=1)
        return _start_of_month(last_month), _end_of_month(last_month)
    if preset is DatePreset.CUSTOM:
        start = _start_of_day(custom_start.astimezone(tz)) if custom_start else None
        end = _end_of_day(custom_end.astimezone(tz)) if custom_end else None
        return start, end
    return None, None


# =============================================================================
# TransactionFilter
# =============================================================================

class TransactionFilter(BaseModel):
    """
    Query filter consumed by TransactionStore.list().

    The default instance matches every record.
    """
    model_config = ConfigDict(frozen=True)

    visibility: VisibilityFilter = VisibilityFilter.ALL
    payment_method: PaymentMethodFilter = PaymentMethodFilter.ALL
    status: StatusFilter = StatusFilter.ALL
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    holder_id: Optional[str] = None
    retained_only: bool = False

    @classmethod
    def for_preset(
        cls,
        preset: DatePreset = DatePreset.ALL,
        now: Optional[datetime] = None,
        custom_start: Optional[datetime] = None,
        custom_end: Optional[datetime] = None,
        **kwargs
    ) -> "TransactionFilter":
        start, end = resolve_date_range(preset, now, custom_start, custom_end)
        return cls(created_from=start, created_to=end, **kwargs)

    def status_values(self) -> Optional[Tuple[TransactionStatus, ...]]:
        """Statuses admitted by the status dimension (None = any)."""
        if self.status is StatusFilter.ACTIVE:
            return ACTIVE_STATUSES
        if self.status is StatusFilter.DONE:
            return (TransactionStatus.COMPLETE,)
        return None

    def matches(self, record: TransactionRecord) -> bool:
        if self.visibility is VisibilityFilter.PRIVATE and not record.is_private:
            return False
        if self.visibility is VisibilityFilter.PUBLIC and record.is_private:
            return False

        if self.payment_method is PaymentMethodFilter.HYBRID:
            if not record.is_hybrid:
                return False
        elif self.payment_method is not PaymentMethodFilter.ALL:
            if record.payment_method != PaymentMethod(self.payment_method.value):
                return False

        statuses = self.status_values()
        if statuses is not None and record.status not in statuses:
            return False

        if self.created_from is not None and record.created_at < self.created_from:
            return False
        if self.created_to is not None and record.created_at > self.created_to:
            return False

        if self.holder_id is not None and record.holder_id != self.holder_id:
            return False
        if self.retained_only and not record.is_retained:
            return False
        return True


# =============================================================================
# Persisted filter selections
# =============================================================================

class FilterState(BaseModel):
    """
    The user's filter selections for the ledger and dashboard views.

    The dashboard keeps its own status selection, defaulting to completed
    transactions only.
    """
    visibility: VisibilityFilter = VisibilityFilter.ALL
    payment_method: PaymentMethodFilter = PaymentMethodFilter.ALL
    status: StatusFilter = StatusFilter.ALL
    dashboard_status: StatusFilter = StatusFilter.DONE
    date_preset: DatePreset = DatePreset.TODAY
    custom_start: Optional[datetime] = None
    custom_end: Optional[datetime] = None

    def to_filter(
        self,
        now: Optional[datetime] = None,
        for_dashboard: bool = False
    ) -> TransactionFilter:
        return TransactionFilter.for_preset(
            self.date_preset,
            now=now,
            custom_start=self.custom_start,
            custom_end=self.custom_end,
            visibility=self.visibility,
            payment_method=self.payment_method,
            status=self.dashboard_status if for_dashboard else self.status,
        )


class KeyValueStore(ABC):
    """Injected persistence for small string values."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...


class InMemoryKeyValueStore(KeyValueStore):

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class FilterPreferences:
    """
    Load/save FilterState through a KeyValueStore.

    Unreadable saved state falls back to defaults (logged, not raised).
    """

    def __init__(self, store: KeyValueStore, key: str = FILTER_STORAGE_KEY) -> None:
        self._store = store
        self._key = key

    def load(self) -> FilterState:
        raw = self._store.get(self._key)
        if not raw:
            return FilterState()
        try:
            return FilterState.model_validate_json(raw)
        except ValidationError as e:
            logger.error(
                f"[LEDGER-FILTERS] Failed to load saved filters, using defaults | "
                f"key={self._key} | error={e.error_count()} validation error(s)"
            )
            return FilterState()

    def save(self, state: FilterState) -> None:
        self._store.set(self._key, state.model_dump_json())


__all__ = [
    "FILTER_STORAGE_KEY",
    "VisibilityFilter",
    "PaymentMethodFilter",
    "StatusFilter",
    "DatePreset",
    "ACTIVE_STATUSES",
    "resolve_date_range",
    "TransactionFilter",
    "FilterState",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "FilterPreferences",
]
