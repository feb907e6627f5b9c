"""
============================================================================
Arbitrage Ledger - Trade Calculator
============================================================================

Decimal Integrity: All calculations use decimal.Decimal
Side Effects: None, except save_quote() which creates a PLANNED transaction

Fee-adjusted conversion chain for planning a trade:

    GBP --(forex_rate, revolut fee)--> EUR --(crypto_rate, kraken fee)--> USDT

    effective_rate = rate * (1 - fee / 100)

Target mode FIAT ("I have X GBP") derives the USDT received; target mode
USDT ("I want X USDT") derives the fiat needed. Cost, return and profit come
from compute_metrics() in Standard mode; the calculator only works out the
amounts that feed it.

============================================================================
"""

from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Dict, Optional
from dataclasses import dataclass
from enum import Enum

from services.decimal_gateway import ZERO, LYD_PRECISION, USDT_PRECISION, coerce_decimal
from services.transaction_metrics import (
    MetricsInput,
    StandardSettlement,
    TransactionMetrics,
    compute_metrics,
)
from services.transaction_models import FiatCurrency, PaymentMethod, TransactionRecord

DEFAULT_FOREX_RATE = Decimal("1.19")
DEFAULT_CRYPTO_RATE = Decimal("1.05")
DEFAULT_REVOLUT_FEE = Decimal("0.5")
DEFAULT_KRAKEN_FEE = Decimal("0.26")

_ONE = Decimal("1")
_HUNDRED = Decimal("100")
_FIAT_PRECISION = Decimal("0.01")


class TargetMode(str, Enum):
    FIAT = "FIAT"
    USDT = "USDT"


@dataclass(frozen=True)
class CalculatorInput:
    """
    Raw calculator form values. Numeric fields may be any numeric-ish type.

    amount is in fiat for TargetMode.FIAT and in USDT for TargetMode.USDT.
    """
    amount: Any = ZERO
    fiat_rate: Any = ZERO
    usdt_rate: Any = ZERO
    currency: FiatCurrency = FiatCurrency.GBP
    target_mode: TargetMode = TargetMode.FIAT
    forex_rate: Any = DEFAULT_FOREX_RATE
    crypto_rate: Any = DEFAULT_CRYPTO_RATE
    revolut_fee: Any = DEFAULT_REVOLUT_FEE
    kraken_fee: Any = DEFAULT_KRAKEN_FEE
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = None


@dataclass(frozen=True)
class CalculatorQuote:
    fiat_amount: Decimal
    eur_amount: Decimal
    usdt_amount: Decimal
    fiat_rate: Decimal
    usdt_rate: Decimal
    forex_rate: Decimal
    crypto_rate: Decimal
    revolut_fee: Decimal
    kraken_fee: Decimal
    effective_forex_rate: Decimal
    effective_crypto_rate: Decimal
    effective_total_rate: Decimal
    total_fees_lyd: Decimal
    metrics: TransactionMetrics

    @property
    def cost(self) -> Decimal:
        return self.metrics.cost_lyd

    @property
    def revenue(self) -> Decimal:
        return self.metrics.return_lyd

    @property
    def profit(self) -> Decimal:
        return self.metrics.profit_lyd

    @property
    def profit_margin_percent(self) -> Decimal:
        return self.metrics.margin * _HUNDRED

    def default_note(self) -> str:
        profit = self.profit.quantize(LYD_PRECISION, rounding=ROUND_HALF_EVEN)
        return f"Profit: {profit:.2f} LYD"

    def to_dict(self) -> Dict[str, Any]:
        def lyd(value: Decimal) -> str:
            return str(value.quantize(LYD_PRECISION, rounding=ROUND_HALF_EVEN))

        return {
            "fiat_amount": str(self.fiat_amount),
            "eur_amount": str(self.eur_amount),
            "usdt_amount": str(self.usdt_amount),
            "effective_forex_rate": str(self.effective_forex_rate),
            "effective_crypto_rate": str(self.effective_crypto_rate),
            "effective_total_rate": str(self.effective_total_rate),
            "total_fees_lyd": lyd(self.total_fees_lyd),
            "cost": lyd(self.cost),
            "revenue": lyd(self.revenue),
            "profit": lyd(self.profit),
            "profit_margin_percent": str(
                self.profit_margin_percent.quantize(Decimal("0.01"), rounding=ROUND_HALF_EVEN)
            ),
        }


def _rate_or_one(value: Any) -> Decimal:
    rate = coerce_decimal(value)
    return rate if rate > ZERO else _ONE


def _apply_fee(rate: Decimal, fee_percent: Decimal) -> Decimal:
    return rate * (_ONE - fee_percent / _HUNDRED)


def quote(calc: CalculatorInput) -> CalculatorQuote:
    """
    Work out the amounts for a calculator form and price them with the engine.

    Never raises on malformed numbers: amount and trade rates fall back to 0,
    conversion rates to 1 and fees to 0.
    """
    currency = FiatCurrency(calc.currency)
    target_mode = TargetMode(calc.target_mode)
    amount = coerce_decimal(calc.amount)
    fiat_rate = coerce_decimal(calc.fiat_rate)
    usdt_rate = coerce_decimal(calc.usdt_rate)
    forex_rate = _rate_or_one(calc.forex_rate)
    crypto_rate = _rate_or_one(calc.crypto_rate)
    revolut_fee = coerce_decimal(calc.revolut_fee)
    kraken_fee = coerce_decimal(calc.kraken_fee)

    is_gbp = currency is FiatCurrency.GBP
    effective_forex = _apply_fee(forex_rate, revolut_fee)
    effective_crypto = _apply_fee(crypto_rate, kraken_fee)
    effective_total = effective_forex * effective_crypto if is_gbp else effective_crypto
    gross_total = forex_rate * crypto_rate if is_gbp else crypto_rate

    if target_mode is TargetMode.USDT:
        usdt_amount = amount
        fiat_amount = amount / effective_total if effective_total > ZERO else ZERO
        gross_fiat = amount / gross_total
        fiat_amount = fiat_amount.quantize(_FIAT_PRECISION, rounding=ROUND_HALF_EVEN)
        total_fees = (fiat_amount - gross_fiat) * fiat_rate
    else:
        fiat_amount = amount
        usdt_amount = (amount * effective_total).quantize(
            USDT_PRECISION, rounding=ROUND_HALF_EVEN
        )
        gross_usdt = amount * gross_total
        total_fees = (gross_usdt - usdt_amount) * usdt_rate

    eur_amount = fiat_amount * effective_forex if is_gbp else fiat_amount
    eur_amount = eur_amount.quantize(_FIAT_PRECISION, rounding=ROUND_HALF_EVEN)

    metrics = compute_metrics(
        MetricsInput(
            fiat_amount=fiat_amount,
            fiat_rate=fiat_rate,
            usdt_amount=usdt_amount,
            usdt_rate=usdt_rate,
            settlement=StandardSettlement(),
        )
    )

    return CalculatorQuote(
        fiat_amount=fiat_amount,
        eur_amount=eur_amount,
        usdt_amount=usdt_amount,
        fiat_rate=fiat_rate,
        usdt_rate=usdt_rate,
        forex_rate=forex_rate,
        crypto_rate=crypto_rate,
        revolut_fee=revolut_fee,
        kraken_fee=kraken_fee,
        effective_forex_rate=effective_forex,
        effective_crypto_rate=effective_crypto,
        effective_total_rate=effective_total,
        total_fees_lyd=total_fees,
        metrics=metrics,
    )


def save_quote(manager: Any, calc: CalculatorInput) -> TransactionRecord:
    """
    Persist a calculator form as a PLANNED transaction.

    manager is a TransactionLifecycleManager; notes default to the previewed
    profit ("Profit: 1758.20 LYD").
    """
    result = quote(calc)
    return manager.create_transaction(
        fiat_amount=result.fiat_amount,
        fiat_rate=result.fiat_rate,
        usdt_amount=result.usdt_amount,
        usdt_rate=result.usdt_rate,
        fiat_currency=FiatCurrency(calc.currency),
        payment_method=PaymentMethod(calc.payment_method),
        notes=calc.notes or result.default_note(),
        forex_rate=result.forex_rate,
        crypto_rate=result.crypto_rate,
        revolut_fee=result.revolut_fee,
        kraken_fee=result.kraken_fee,
    )


__all__ = [
    "DEFAULT_FOREX_RATE",
    "DEFAULT_CRYPTO_RATE",
    "DEFAULT_REVOLUT_FEE",
    "DEFAULT_KRAKEN_FEE",
    "TargetMode",
    "CalculatorInput",
    "CalculatorQuote",
    "quote",
    "save_quote",
]
