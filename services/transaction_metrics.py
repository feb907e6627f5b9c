"""
============================================================================
Transaction Metrics Engine
============================================================================

Decimal Integrity: All calculations use decimal.Decimal
Side Effects: None (pure, stateless, safe to call on every keystroke)

Single source of truth for the financial figures of an arbitrage round-trip
(fiat -> USDT -> LYD). The calculator preview, the inline card editor, the
drawer editor and every report call compute_metrics(); none of them carries
its own copy of the arithmetic.

CORE FIGURES:
    cost_lyd           = fiat_amount * fiat_rate
    usdt_to_cover_cost = cost_lyd / usdt_rate        (0 when usdt_rate <= 0)
    surplus_usdt       = max(0, usdt_amount - usdt_to_cover_cost)

SETTLEMENT MODES:
    Standard  - sell everything at usdt_rate
                profit = usdt_amount * usdt_rate - cost
    Hybrid    - cover the cost at usdt_rate, sell the surplus at the bank rate
                profit = surplus * (bank_sell_rate or usdt_rate)
    Retained  - cover the cost, keep the surplus offshore
                profit = surplus * usdt_rate (valuation only, nothing realized)

Malformed numeric input never raises: missing, non-numeric and non-finite
values are treated as 0 and produce degenerate-but-defined output. Finite
inputs whose products overflow the decimal context (or cannot be quantized
at display precision) yield the all-zero tuple for their settlement mode.

============================================================================
"""

from decimal import Decimal, ROUND_HALF_EVEN, localcontext
from typing import Any, Dict, Optional, Union
from dataclasses import dataclass, field
from enum import Enum

from services.decimal_gateway import (
    ZERO,
    LYD_PRECISION,
    USDT_PRECISION,
    coerce_decimal,
)

# Working precision for display quantization. Inputs accepted by the API
# (below 10^12 with at most 10 places) quantize exactly at 1e-8.
QUANTIZE_DIGITS = 60


# =============================================================================
# Settlement Mode (tagged variant)
# =============================================================================

class SettlementKind(str, Enum):
    STANDARD = "standard"
    HYBRID = "hybrid"
    RETAINED = "retained"


class RetainedCurrency(str, Enum):
    """Currency in which a retained surplus is held offshore."""
    USDT = "USDT"
    EUR = "EUR"
    GBP = "GBP"


@dataclass(frozen=True)
class StandardSettlement:
    """Full liquidation of the USDT leg at usdt_rate."""

    @property
    def kind(self) -> SettlementKind:
        return SettlementKind.STANDARD


@dataclass(frozen=True)
class HybridSettlement:
    """Surplus liquidated through a separate channel at bank_sell_rate."""
    bank_sell_rate: Optional[Decimal] = None

    @property
    def kind(self) -> SettlementKind:
        return SettlementKind.HYBRID


@dataclass(frozen=True)
class RetainedSettlement:
    """Surplus held offshore in its native currency."""
    currency: RetainedCurrency = RetainedCurrency.USDT

    @property
    def kind(self) -> SettlementKind:
        return SettlementKind.RETAINED


SettlementMode = Union[StandardSettlement, HybridSettlement, RetainedSettlement]


def settlement_from_parts(
    kind: Union[SettlementKind, str, None],
    bank_sell_rate: Any = None,
    retained_currency: Union[RetainedCurrency, str, None] = None
) -> SettlementMode:
    """
    Build a settlement variant from flat (persisted / wire) fields.

    Only the field relevant to the chosen kind is kept, so a row carrying both
    a bank rate and a retained currency can never produce an ambiguous mode.

    Raises:
        ValueError: If kind or retained_currency is not recognised
    """
    kind = SettlementKind(kind or SettlementKind.STANDARD)
    if kind is SettlementKind.HYBRID:
        rate = coerce_decimal(bank_sell_rate) if bank_sell_rate is not None else None
        return HybridSettlement(bank_sell_rate=rate)
    if kind is SettlementKind.RETAINED:
        return RetainedSettlement(
            currency=RetainedCurrency(retained_currency or RetainedCurrency.USDT)
        )
    return StandardSettlement()


def settlement_to_parts(mode: SettlementMode) -> Dict[str, Any]:
    """Flatten a settlement variant for persistence or serialization."""
    return {
        "settlement_mode": mode.kind.value,
        "bank_sell_rate": (
            mode.bank_sell_rate if isinstance(mode, HybridSettlement) else None
        ),
        "retained_currency": (
            mode.currency.value if isinstance(mode, RetainedSettlement) else None
        ),
    }


# =============================================================================
# Engine Input / Output
# =============================================================================

@dataclass(frozen=True)
class MetricsInput:
    """
    Raw trade inputs. Values may be any numeric-ish type; the engine coerces.
    """
    fiat_amount: Any = ZERO
    fiat_rate: Any = ZERO
    usdt_amount: Any = ZERO
    usdt_rate: Any = ZERO
    settlement: SettlementMode = field(default_factory=StandardSettlement)


@dataclass(frozen=True)
class TransactionMetrics:
    """
    Derived figures for one transaction. Never persisted on its own.

    LYD figures: cost_lyd, profit_lyd, realized_profit_lyd, return_lyd,
                 realized_return_lyd
    USDT figures: usdt_to_cover_cost, surplus_usdt, return_usdt
    """
    settlement_kind: SettlementKind
    cost_lyd: Decimal
    usdt_to_cover_cost: Decimal
    surplus_usdt: Decimal
    profit_lyd: Decimal
    realized_profit_lyd: Decimal
    return_lyd: Decimal
    realized_return_lyd: Decimal
    return_usdt: Decimal

    @property
    def margin(self) -> Decimal:
        """profit / cost, 0 when there is no cost basis."""
        if self.cost_lyd <= ZERO:
            return ZERO
        try:
            return self.profit_lyd / self.cost_lyd
        except ArithmeticError:
            return ZERO

    def quantized(self) -> "TransactionMetrics":
        """Display/persistence view: LYD to 0.01, USDT to 1e-8, half-even."""
        def lyd(value: Decimal) -> Decimal:
            return value.quantize(LYD_PRECISION, rounding=ROUND_HALF_EVEN)

        def usdt(value: Decimal) -> Decimal:
            return value.quantize(USDT_PRECISION, rounding=ROUND_HALF_EVEN)

        try:
            with localcontext() as ctx:
                ctx.prec = QUANTIZE_DIGITS
                return TransactionMetrics(
                    settlement_kind=self.settlement_kind,
                    cost_lyd=lyd(self.cost_lyd),
                    usdt_to_cover_cost=usdt(self.usdt_to_cover_cost),
                    surplus_usdt=usdt(self.surplus_usdt),
                    profit_lyd=lyd(self.profit_lyd),
                    realized_profit_lyd=lyd(self.realized_profit_lyd),
                    return_lyd=lyd(self.return_lyd),
                    realized_return_lyd=lyd(self.realized_return_lyd),
                    return_usdt=usdt(self.return_usdt),
                )
        except ArithmeticError:
            # Too many digits for the context at this precision
            return _degenerate_metrics(self.settlement_kind)

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary for logging/serialization (Decimals as str)."""
        return {
            "settlement_mode": self.settlement_kind.value,
            "cost_lyd": str(self.cost_lyd),
            "usdt_to_cover_cost": str(self.usdt_to_cover_cost),
            "surplus_usdt": str(self.surplus_usdt),
            "profit_lyd": str(self.profit_lyd),
            "realized_profit_lyd": str(self.realized_profit_lyd),
            "return_lyd": str(self.return_lyd),
            "realized_return_lyd": str(self.realized_return_lyd),
            "return_usdt": str(self.return_usdt),
            "margin": str(self.margin),
        }


# =============================================================================
# compute_metrics()
# =============================================================================

def compute_metrics(metrics_input: MetricsInput) -> TransactionMetrics:
    """
    Map trade inputs + settlement mode to the full metrics tuple.

    Args:
        metrics_input: Raw trade inputs

    Returns:
        TransactionMetrics (full precision, see quantized() for display)
    """
    try:
        return _derive_metrics(metrics_input)
    except ArithmeticError:
        return _degenerate_metrics(metrics_input.settlement.kind)


def quantize_figure(value: Decimal, precision: Decimal) -> Decimal:
    """Half-even quantize; 0 when the value has too many digits for precision."""
    try:
        with localcontext() as ctx:
            ctx.prec = QUANTIZE_DIGITS
            return value.quantize(precision, rounding=ROUND_HALF_EVEN)
    except ArithmeticError:
        return ZERO


def _degenerate_metrics(kind: SettlementKind) -> TransactionMetrics:
    return TransactionMetrics(
        settlement_kind=kind,
        cost_lyd=ZERO,
        usdt_to_cover_cost=ZERO,
        surplus_usdt=ZERO,
        profit_lyd=ZERO,
        realized_profit_lyd=ZERO,
        return_lyd=ZERO,
        realized_return_lyd=ZERO,
        return_usdt=ZERO,
    )


def _derive_metrics(metrics_input: MetricsInput) -> TransactionMetrics:
    fiat_amount = coerce_decimal(metrics_input.fiat_amount)
    fiat_rate = coerce_decimal(metrics_input.fiat_rate)
    usdt_amount = coerce_decimal(metrics_input.usdt_amount)
    usdt_rate = coerce_decimal(metrics_input.usdt_rate)
    settlement = metrics_input.settlement

    cost_lyd = fiat_amount * fiat_rate
    usdt_to_cover_cost = cost_lyd / usdt_rate if usdt_rate > ZERO else ZERO
    surplus_usdt = max(ZERO, usdt_amount - usdt_to_cover_cost)

    if isinstance(settlement, HybridSettlement):
        bank_rate = coerce_decimal(settlement.bank_sell_rate)
        sell_rate = bank_rate if bank_rate > ZERO else usdt_rate
        profit = surplus_usdt * sell_rate
        realized_profit = profit
        return_lyd = cost_lyd + profit
        realized_return = return_lyd
    elif isinstance(settlement, RetainedSettlement):
        profit = surplus_usdt * usdt_rate
        realized_profit = ZERO
        return_lyd = cost_lyd + profit
        realized_return = cost_lyd
    else:
        return_lyd = usdt_amount * usdt_rate
        profit = return_lyd - cost_lyd
        realized_profit = profit
        realized_return = return_lyd

    return TransactionMetrics(
        settlement_kind=settlement.kind,
        cost_lyd=cost_lyd,
        usdt_to_cover_cost=usdt_to_cover_cost,
        surplus_usdt=surplus_usdt,
        profit_lyd=profit,
        realized_profit_lyd=realized_profit,
        return_lyd=return_lyd,
        realized_return_lyd=realized_return,
        return_usdt=usdt_amount,
    )


__all__ = [
    "SettlementKind",
    "RetainedCurrency",
    "StandardSettlement",
    "HybridSettlement",
    "RetainedSettlement",
    "SettlementMode",
    "settlement_from_parts",
    "settlement_to_parts",
    "MetricsInput",
    "TransactionMetrics",
    "compute_metrics",
    "quantize_figure",
]
