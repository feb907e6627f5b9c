"""
============================================================================
Arbitrage Ledger - Reporting
============================================================================

Decimal Integrity: All sums use decimal.Decimal; quantized only in to_dict()
Side Effects: None (pure functions over already-loaded records)

Every aggregate is a sum of per-record engine outputs. A record's profit is
its manual override when present, otherwise compute_metrics().profit_lyd;
its cost is compute_metrics().cost_lyd. No report re-derives a formula.

REPORTS:
    summarize_transactions        - dashboard cards (profit, volume, margin)
    profit_series                 - per-transaction chart points, oldest first
    summarize_holders             - profit and count per holder
    summarize_investment_holdings - retained capital per holder

============================================================================
"""

from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime

from services.decimal_gateway import ZERO, to_lyd, to_usdt
from services.transaction_models import Holder, PaymentMethod, TransactionRecord

UNKNOWN_HOLDER_NAME = "Unknown Holder"

_HUNDRED = Decimal("100")
_MARGIN_PRECISION = Decimal("0.01")


def _lyd(value: Decimal) -> str:
    return str(to_lyd(value))


def _usdt(value: Decimal) -> str:
    return str(to_usdt(value))


# =============================================================================
# Dashboard summary
# =============================================================================

@dataclass(frozen=True)
class LedgerSummary:
    """
    Dashboard totals over a set of records.

    avg_margin_percent is total_profit / total_volume * 100 (0 without volume).
    retained_valuation is the valuation-only profit of retained records and
    retained_usdt the capital they keep offshore.
    """
    total_profit: Decimal = ZERO
    cash_profit: Decimal = ZERO
    bank_profit: Decimal = ZERO
    realized_profit: Decimal = ZERO
    retained_valuation: Decimal = ZERO
    retained_usdt: Decimal = ZERO
    total_volume: Decimal = ZERO
    total_transactions: int = 0

    @property
    def avg_profit(self) -> Decimal:
        if self.total_transactions == 0:
            return ZERO
        return self.total_profit / Decimal(self.total_transactions)

    @property
    def avg_margin_percent(self) -> Decimal:
        if self.total_volume <= ZERO:
            return ZERO
        return self.total_profit / self.total_volume * _HUNDRED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_profit": _lyd(self.total_profit),
            "cash_profit": _lyd(self.cash_profit),
            "bank_profit": _lyd(self.bank_profit),
            "realized_profit": _lyd(self.realized_profit),
            "retained_valuation": _lyd(self.retained_valuation),
            "retained_usdt": _usdt(self.retained_usdt),
            "total_volume": _lyd(self.total_volume),
            "total_transactions": self.total_transactions,
            "avg_profit": _lyd(self.avg_profit),
            "avg_margin_percent": str(
                self.avg_margin_percent.quantize(_MARGIN_PRECISION, rounding=ROUND_HALF_EVEN)
            ),
        }


def summarize_transactions(records: List[TransactionRecord]) -> LedgerSummary:
    """
    Sum engine outputs over records. Callers choose the record set; the
    dashboard passes completed transactions only.
    """
    total_profit = cash_profit = bank_profit = ZERO
    realized_profit = retained_valuation = retained_usdt = total_volume = ZERO

    for record in records:
        metrics = record.metrics()
        profit = record.effective_profit(metrics)

        total_profit += profit
        if record.payment_method is PaymentMethod.CASH:
            cash_profit += profit
        else:
            bank_profit += profit
        total_volume += metrics.cost_lyd

        if record.is_retained:
            retained_valuation += profit
            retained_usdt += record.retained_amount(metrics)
        else:
            realized_profit += profit

    return LedgerSummary(
        total_profit=total_profit,
        cash_profit=cash_profit,
        bank_profit=bank_profit,
        realized_profit=realized_profit,
        retained_valuation=retained_valuation,
        retained_usdt=retained_usdt,
        total_volume=total_volume,
        total_transactions=len(records),
    )


# =============================================================================
# Profit series
# =============================================================================

@dataclass(frozen=True)
class ProfitPoint:
    label: str
    profit: Decimal
    volume: Decimal
    created_at: datetime
    display_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "profit": _lyd(self.profit),
            "volume": _lyd(self.volume),
            "created_at": self.created_at.isoformat(),
            "display_id": self.display_id,
        }


def profit_series(records: List[TransactionRecord]) -> List[ProfitPoint]:
    """One point per record, oldest first, labelled "Tx 1", "Tx 2", ..."""
    ordered = sorted(records, key=lambda r: (r.created_at, r.sequence_id or 0))
    points = []
    for index, record in enumerate(ordered, start=1):
        metrics = record.metrics()
        points.append(
            ProfitPoint(
                label=f"Tx {index}",
                profit=record.effective_profit(metrics),
                volume=metrics.cost_lyd,
                created_at=record.created_at,
                display_id=record.display_id,
            )
        )
    return points


# =============================================================================
# Per-holder summary
# =============================================================================

@dataclass
class HolderSummary:
    holder_id: str
    name: str
    total_profit: Decimal = ZERO
    transaction_count: int = 0
    transactions: List[TransactionRecord] = field(default_factory=list)

    def to_dict(self, include_transactions: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "holder_id": self.holder_id,
            "name": self.name,
            "total_profit": _lyd(self.total_profit),
            "transaction_count": self.transaction_count,
        }
        if include_transactions:
            data["transactions"] = [
                {
                    "id": r.id,
                    "display_id": r.display_id,
                    "payment_method": r.payment_method.value,
                    "profit": _lyd(r.effective_profit()),
                    "created_at": r.created_at.isoformat(),
                }
                for r in self.transactions
            ]
        return data


def summarize_holders(
    holders: List[Holder],
    records: List[TransactionRecord]
) -> List[HolderSummary]:
    """
    Profit and transaction count for every holder, highest profit first.

    Holders without transactions are listed with zero; records pointing at
    an unknown holder are ignored.
    """
    summaries: Dict[str, HolderSummary] = {
        h.id: HolderSummary(holder_id=h.id, name=h.name) for h in holders
    }
    for record in sorted(records, key=lambda r: r.created_at, reverse=True):
        summary = summaries.get(record.holder_id) if record.holder_id else None
        if summary is None:
            continue
        summary.total_profit += record.effective_profit()
        summary.transaction_count += 1
        summary.transactions.append(record)

    return sorted(summaries.values(), key=lambda s: s.total_profit, reverse=True)


# =============================================================================
# Investment holdings (retained capital)
# =============================================================================

@dataclass
class InvestmentHolding:
    holder_id: str
    holder_name: str
    is_investor: bool = False
    total_retained: Decimal = ZERO
    transaction_count: int = 0
    transactions: List[TransactionRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "holder_id": self.holder_id,
            "holder_name": self.holder_name,
            "is_investor": self.is_investor,
            "total_retained": _usdt(self.total_retained),
            "transaction_count": self.transaction_count,
            "transactions": [
                {
                    "id": r.id,
                    "display_id": r.display_id,
                    "status": r.status.value,
                    "retained_amount": _usdt(r.retained_amount()),
                    "retained_currency": r.settlement.currency.value,
                    "created_at": r.created_at.isoformat(),
                }
                for r in self.transactions
            ],
        }


@dataclass
class InvestmentReport:
    holdings: List[InvestmentHolding]
    grand_total: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grand_total": _usdt(self.grand_total),
            "holdings": [h.to_dict() for h in self.holdings],
        }


def summarize_investment_holdings(
    holders: List[Holder],
    records: List[TransactionRecord],
    search: Optional[str] = None
) -> InvestmentReport:
    """
    Retained capital grouped by holder.

    Investors are always listed, even with nothing retained. Non-investor
    holders appear only while they hold something. Retained records without
    a holder count toward neither a holding nor the grand total. A holder id
    that no longer resolves is reported under "Unknown Holder".
    """
    by_id = {h.id: h for h in holders}
    holdings: Dict[str, InvestmentHolding] = {
        h.id: InvestmentHolding(holder_id=h.id, holder_name=h.name, is_investor=True)
        for h in holders if h.is_investor
    }
    grand_total = ZERO

    for record in sorted(records, key=lambda r: r.created_at, reverse=True):
        if not record.is_retained or not record.holder_id:
            continue
        amount = record.retained_amount()
        grand_total += amount

        holding = holdings.get(record.holder_id)
        if holding is None:
            holder = by_id.get(record.holder_id)
            holding = InvestmentHolding(
                holder_id=record.holder_id,
                holder_name=holder.name if holder else UNKNOWN_HOLDER_NAME,
                is_investor=bool(holder and holder.is_investor),
            )
            holdings[record.holder_id] = holding
        holding.total_retained += amount
        holding.transaction_count += 1
        holding.transactions.append(record)

    visible = [
        h for h in holdings.values()
        if h.total_retained > ZERO or h.is_investor
    ]
    if search:
        needle = search.strip().lower()
        visible = [h for h in visible if needle in h.holder_name.lower()]
    visible.sort(key=lambda h: h.total_retained, reverse=True)
    return InvestmentReport(holdings=visible, grand_total=grand_total)


__all__ = [
    "UNKNOWN_HOLDER_NAME",
    "LedgerSummary",
    "summarize_transactions",
    "ProfitPoint",
    "profit_series",
    "HolderSummary",
    "summarize_holders",
    "InvestmentHolding",
    "InvestmentReport",
    "summarize_investment_holdings",
]
