"""
============================================================================
Arbitrage Ledger - Domain Records
============================================================================

Decimal Integrity: All amounts and rates are decimal.Decimal
Side Effects: None (data containers)

RECORDS:
    TransactionRecord - one fiat -> USDT -> LYD round-trip
    Holder            - counterparty holding settled fiat or retained capital
    HolderNote        - free-text note attached to a holder
    AuditEntry        - {old, new} change set for one mutation

Metrics are never stored on the record. TransactionRecord.metrics() is a thin
call into compute_metrics(); the cached profit / retained amount columns are
written by the store from the same call.

============================================================================
"""

from decimal import Decimal
from typing import Optional, Dict, Any, Union
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
import uuid

from services.decimal_gateway import ZERO, LYD_PRECISION, USDT_PRECISION
from services.display_id import format_display_id
from services.transaction_metrics import (
    MetricsInput,
    RetainedSettlement,
    HybridSettlement,
    SettlementMode,
    StandardSettlement,
    TransactionMetrics,
    compute_metrics,
    quantize_figure,
    settlement_to_parts,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Enums
# =============================================================================

class TransactionStatus(str, Enum):
    """
    Transaction lifecycle states.

    State Machine:
        PLANNED -> IN_PROGRESS (first progress step set)
        IN_PROGRESS -> COMPLETE (all progress steps set)
        PLANNED/IN_PROGRESS -> CANCELLED

    Terminal States (automatic flow): COMPLETE, CANCELLED
    """
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK = "bank"


class FiatCurrency(str, Enum):
    GBP = "GBP"
    EUR = "EUR"


class ProgressStep(str, Enum):
    FIAT_ACQUIRED = "fiat_acquired"
    USDT_SOLD = "usdt_sold"
    FIAT_PAID = "fiat_paid"


# =============================================================================
# Progress Steps
# =============================================================================

@dataclass(frozen=True)
class ProgressSteps:
    """Three independent progress flags."""
    fiat_acquired: bool = False
    usdt_sold: bool = False
    fiat_paid: bool = False

    def get(self, step: ProgressStep) -> bool:
        return bool(getattr(self, step.value))

    def with_step(self, step: ProgressStep, value: bool) -> "ProgressSteps":
        return replace(self, **{step.value: bool(value)})

    @property
    def all_done(self) -> bool:
        return self.fiat_acquired and self.usdt_sold and self.fiat_paid

    @property
    def any_done(self) -> bool:
        return self.fiat_acquired or self.usdt_sold or self.fiat_paid

    def to_dict(self) -> Dict[str, bool]:
        return {
            "fiat_acquired": self.fiat_acquired,
            "usdt_sold": self.usdt_sold,
            "fiat_paid": self.fiat_paid,
        }


# =============================================================================
# Profit Figure (Computed | Overridden)
# =============================================================================

@dataclass(frozen=True)
class ComputedProfit:
    """Profit follows the metrics engine."""

    @property
    def is_override(self) -> bool:
        return False


@dataclass(frozen=True)
class OverriddenProfit:
    """Manually entered profit; supersedes the computed figure."""
    value: Decimal

    @property
    def is_override(self) -> bool:
        return True


ProfitFigure = Union[ComputedProfit, OverriddenProfit]


# =============================================================================
# TransactionRecord
# =============================================================================

@dataclass
class TransactionRecord:
    """
    Arbitrage transaction record.

    Input Constraints: amounts and rates are Decimal; sequence_id is assigned
                       by the store on insert and never changes afterwards.
    """
    id: str
    fiat_amount: Decimal
    fiat_rate: Decimal
    usdt_amount: Decimal
    usdt_rate: Decimal
    fiat_currency: FiatCurrency = FiatCurrency.GBP
    payment_method: PaymentMethod = PaymentMethod.CASH
    settlement: SettlementMode = field(default_factory=StandardSettlement)
    profit_figure: ProfitFigure = field(default_factory=ComputedProfit)
    retained_amount_override: Optional[Decimal] = None
    status: TransactionStatus = TransactionStatus.PLANNED
    steps: ProgressSteps = field(default_factory=ProgressSteps)
    holder_id: Optional[str] = None
    is_private: bool = True
    notes: Optional[str] = None
    created_by: Optional[str] = None
    forex_rate: Optional[Decimal] = None
    crypto_rate: Optional[Decimal] = None
    revolut_fee: Optional[Decimal] = None
    kraken_fee: Optional[Decimal] = None
    sequence_id: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_hybrid(self) -> bool:
        return isinstance(self.settlement, HybridSettlement)

    @property
    def is_retained(self) -> bool:
        return isinstance(self.settlement, RetainedSettlement)

    @property
    def display_id(self) -> str:
        return format_display_id(self.sequence_id, self.payment_method)

    def metrics_input(self) -> MetricsInput:
        return MetricsInput(
            fiat_amount=self.fiat_amount,
            fiat_rate=self.fiat_rate,
            usdt_amount=self.usdt_amount,
            usdt_rate=self.usdt_rate,
            settlement=self.settlement,
        )

    def metrics(self) -> TransactionMetrics:
        return compute_metrics(self.metrics_input())

    def effective_profit(self, metrics: Optional[TransactionMetrics] = None) -> Decimal:
        """Manual override when present, engine profit otherwise."""
        if isinstance(self.profit_figure, OverriddenProfit):
            return self.profit_figure.value
        return (metrics or self.metrics()).profit_lyd

    def retained_amount(self, metrics: Optional[TransactionMetrics] = None) -> Decimal:
        """
        Amount held offshore. Zero unless retained; never negative.
        """
        if not self.is_retained:
            return ZERO
        if self.retained_amount_override is not None:
            return max(ZERO, self.retained_amount_override)
        return (metrics or self.metrics()).surplus_usdt

    def cached_figures(self) -> Dict[str, Decimal]:
        """Quantized profit / retained amount written alongside the inputs."""
        metrics = self.metrics()
        return {
            "profit": quantize_figure(self.effective_profit(metrics), LYD_PRECISION),
            "retained_amount": quantize_figure(self.retained_amount(metrics), USDT_PRECISION),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        metrics = self.metrics()
        data = {
            "id": self.id,
            "sequence_id": self.sequence_id,
            "display_id": self.display_id,
            "fiat_currency": self.fiat_currency.value,
            "payment_method": self.payment_method.value,
            "fiat_amount": str(self.fiat_amount),
            "fiat_rate": str(self.fiat_rate),
            "usdt_amount": str(self.usdt_amount),
            "usdt_rate": str(self.usdt_rate),
            "status": self.status.value,
            "steps": self.steps.to_dict(),
            "holder_id": self.holder_id,
            "is_private": self.is_private,
            "notes": self.notes,
            "created_by": self.created_by,
            "profit_overridden": self.profit_figure.is_override,
            "profit": str(self.effective_profit(metrics)),
            "retained_amount": str(self.retained_amount(metrics)),
            "retained_amount_overridden": self.retained_amount_override is not None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        parts = settlement_to_parts(self.settlement)
        data["settlement_mode"] = parts["settlement_mode"]
        data["bank_sell_rate"] = (
            str(parts["bank_sell_rate"]) if parts["bank_sell_rate"] is not None else None
        )
        data["retained_currency"] = parts["retained_currency"]
        return data


# =============================================================================
# Holder / HolderNote
# =============================================================================

@dataclass
class Holder:
    """
    Named counterparty. is_investor marks holders that take part in
    capital-retention reporting.
    """
    id: str
    name: str
    is_investor: bool = False
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "is_investor": self.is_investor,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class HolderNote:
    id: str
    holder_id: str
    content: str
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)


# =============================================================================
# AuditEntry
# =============================================================================

class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    UPDATE_STATUS = "update_status"
    UPDATE_PROGRESS = "update_progress"
    ASSIGN_HOLDER = "assign_holder"
    UPDATE_SETTLEMENT = "update_settlement"
    OVERRIDE_PROFIT = "override_profit"
    RESET_PROFIT = "reset_profit"
    OVERRIDE_RETAINED = "override_retained"
    RESET_RETAINED = "reset_retained"
    DELETE = "delete"


@dataclass
class AuditEntry:
    """
    Record of one mutation for the audit trail.

    changes is always {"old": {...}, "new": {...}} over the changed attribute
    set, with JSON-compatible values.
    """
    transaction_id: str
    actor_id: str
    action: AuditAction
    changes: Dict[str, Dict[str, Any]]
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "actor_id": self.actor_id,
            "action": self.action.value,
            "changes": self.changes,
            "created_at": self.created_at.isoformat(),
        }


__all__ = [
    "utc_now",
    "new_id",
    "TransactionStatus",
    "PaymentMethod",
    "FiatCurrency",
    "ProgressStep",
    "ProgressSteps",
    "ComputedProfit",
    "OverriddenProfit",
    "ProfitFigure",
    "TransactionRecord",
    "Holder",
    "HolderNote",
    "AuditAction",
    "AuditEntry",
]
