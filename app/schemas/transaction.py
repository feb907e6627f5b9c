"""
============================================================================
Arbitrage Ledger - API Schemas
============================================================================

Input Constraints: Financial values are decimal strings or integers, never
                   floats; at most 10 decimal places and 28 digits
Side Effects: None (pure validation)

Responses serialize every Decimal as a string.

============================================================================
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from services.calculator import TargetMode
from services.transaction_filters import (
    DatePreset,
    PaymentMethodFilter,
    StatusFilter,
    VisibilityFilter,
)
from services.transaction_metrics import (
    RetainedCurrency,
    SettlementKind,
    SettlementMode,
    settlement_from_parts,
)
from services.transaction_models import (
    AuditEntry,
    FiatCurrency,
    Holder,
    HolderNote,
    PaymentMethod,
    TransactionRecord,
    TransactionStatus,
)


# ============================================================================
# CONSTANTS
# ============================================================================

MAX_DECIMAL_PLACES = 10
MAX_TOTAL_DIGITS = 28
# Amounts and rates stay below 10^12, so cost = amount * rate still fits the
# 28-digit decimal context at 0.01.
MAX_MAGNITUDE_EXPONENT = 12


# ============================================================================
# CUSTOM VALIDATORS
# ============================================================================

def validate_decimal_input(
    value: Any,
    field_name: str,
    allow_negative: bool = False
) -> Optional[Decimal]:
    """
    Validate a financial input.

    Raises:
        ValueError: float input, non-finite value, too many places/digits,
                    a magnitude of 10^12 or more,
                    or a negative value where none is allowed
    """
    if value is None:
        return None

    if isinstance(value, float):
        raise ValueError(
            f"[TXN-VAL-002] {field_name} received float type. "
            f"Send decimal values as strings. Received: {value}"
        )
    if isinstance(value, bool):
        raise ValueError(f"[TXN-VAL-002] {field_name} must be a number, got a boolean")

    try:
        if isinstance(value, Decimal):
            decimal_value = value
        elif isinstance(value, (str, int)):
            decimal_value = Decimal(str(value).strip())
        else:
            raise ValueError(
                f"[TXN-VAL-002] {field_name} must be a decimal string or int. "
                f"Received: {type(value).__name__}"
            )
    except InvalidOperation as e:
        raise ValueError(
            f"[TXN-VAL-002] {field_name} is not a valid decimal number. Received: {value}"
        ) from e

    if not decimal_value.is_finite():
        raise ValueError(f"[TXN-VAL-002] {field_name} must be a finite number")

    sign, digits, exponent = decimal_value.as_tuple()
    if exponent < 0 and abs(exponent) > MAX_DECIMAL_PLACES:
        raise ValueError(
            f"[TXN-VAL-002] {field_name} exceeds maximum {MAX_DECIMAL_PLACES} decimal places"
        )
    if len(digits) > MAX_TOTAL_DIGITS:
        raise ValueError(
            f"[TXN-VAL-002] {field_name} exceeds maximum {MAX_TOTAL_DIGITS} total digits"
        )
    if decimal_value != 0 and decimal_value.adjusted() >= MAX_MAGNITUDE_EXPONENT:
        raise ValueError(
            f"[TXN-VAL-002] {field_name} must be below 10^{MAX_MAGNITUDE_EXPONENT}. "
            f"Received: {value}"
        )
    if not allow_negative and decimal_value < 0:
        raise ValueError(f"[TXN-VAL-002] {field_name} must not be negative")
    return decimal_value


class DecimalModel(BaseModel):
    """Base for request bodies carrying non-negative financial values."""

    model_config = ConfigDict(extra="forbid")

    @field_validator(
        "fiat_amount", "fiat_rate", "usdt_amount", "usdt_rate",
        "forex_rate", "crypto_rate", "revolut_fee", "kraken_fee",
        "bank_sell_rate", "amount",
        mode="before",
        check_fields=False,
    )
    @classmethod
    def validate_amounts(cls, v: Any, info: Any) -> Optional[Decimal]:
        return validate_decimal_input(v, info.field_name)


# ============================================================================
# SETTLEMENT
# ============================================================================

class SettlementIn(DecimalModel):
    mode: SettlementKind = SettlementKind.STANDARD
    bank_sell_rate: Optional[Decimal] = None
    retained_currency: Optional[RetainedCurrency] = None

    def to_mode(self) -> SettlementMode:
        return settlement_from_parts(self.mode, self.bank_sell_rate, self.retained_currency)


# ============================================================================
# TRANSACTION REQUESTS
# ============================================================================

class TransactionCreate(DecimalModel):
    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "fiat_amount": "1000",
                "fiat_rate": "7.5",
                "usdt_amount": "1500",
                "usdt_rate": "6.1",
                "fiat_currency": "GBP",
                "payment_method": "cash",
                "settlement": {"mode": "hybrid", "bank_sell_rate": "6.5"},
            }
        },
    )

    fiat_amount: Decimal = Field(..., description="Fiat units bought")
    fiat_rate: Decimal = Field(..., description="LYD per fiat unit")
    usdt_amount: Decimal = Field(..., description="USDT obtained")
    usdt_rate: Decimal = Field(..., description="LYD per USDT")
    fiat_currency: FiatCurrency = FiatCurrency.GBP
    payment_method: PaymentMethod = PaymentMethod.CASH
    settlement: SettlementIn = Field(default_factory=SettlementIn)
    holder_id: Optional[str] = None
    is_private: bool = True
    notes: Optional[str] = Field(None, max_length=2000)
    created_at: Optional[datetime] = None
    forex_rate: Optional[Decimal] = None
    crypto_rate: Optional[Decimal] = None
    revolut_fee: Optional[Decimal] = None
    kraken_fee: Optional[Decimal] = None


class TransactionUpdate(DecimalModel):
    """Partial edit; only fields present in the body are applied."""
    fiat_amount: Optional[Decimal] = None
    fiat_rate: Optional[Decimal] = None
    usdt_amount: Optional[Decimal] = None
    usdt_rate: Optional[Decimal] = None
    fiat_currency: Optional[FiatCurrency] = None
    payment_method: Optional[PaymentMethod] = None
    created_at: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=2000)
    is_private: Optional[bool] = None
    holder_id: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        """Fields sent in the body; null only clears notes and holder_id."""
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None or name in ("notes", "holder_id")
        }


class StepUpdate(BaseModel):
    """value=None toggles the step."""
    value: Optional[bool] = None


class HolderAssignment(BaseModel):
    holder_id: str = Field(..., min_length=1)


class StatusUpdate(BaseModel):
    status: TransactionStatus


class OverrideValue(BaseModel):
    value: Decimal

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, v: Any) -> Optional[Decimal]:
        if v is None:
            raise ValueError("[TXN-VAL-002] value is required")
        return validate_decimal_input(v, "value", allow_negative=True)


# ============================================================================
# HOLDER REQUESTS
# ============================================================================

class HolderCreate(BaseModel):
    name: str = Field(..., max_length=200)
    is_investor: bool = False


class HolderUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    is_investor: Optional[bool] = None


class NoteCreate(BaseModel):
    content: str = Field(..., max_length=5000)


# ============================================================================
# CALCULATOR REQUESTS
# ============================================================================

class CalculatorRequest(DecimalModel):
    amount: Decimal = Decimal("0")
    fiat_rate: Decimal = Decimal("0")
    usdt_rate: Decimal = Decimal("0")
    currency: FiatCurrency = FiatCurrency.GBP
    target_mode: TargetMode = TargetMode.FIAT
    forex_rate: Optional[Decimal] = None
    crypto_rate: Optional[Decimal] = None
    revolut_fee: Optional[Decimal] = None
    kraken_fee: Optional[Decimal] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(None, max_length=2000)


# ============================================================================
# FILTER QUERY
# ============================================================================

class FilterQuery(BaseModel):
    """Query-string filter shared by the list and report endpoints."""
    visibility: VisibilityFilter = VisibilityFilter.ALL
    payment_method: PaymentMethodFilter = PaymentMethodFilter.ALL
    status: StatusFilter = StatusFilter.ALL
    date_preset: DatePreset = DatePreset.ALL
    custom_start: Optional[datetime] = None
    custom_end: Optional[datetime] = None
    holder_id: Optional[str] = None
    retained_only: bool = False


# ============================================================================
# RESPONSES
# ============================================================================

class TransactionOut(BaseModel):
    id: str
    sequence_id: Optional[int]
    display_id: str
    fiat_currency: str
    payment_method: str
    fiat_amount: str
    fiat_rate: str
    usdt_amount: str
    usdt_rate: str
    settlement_mode: str
    bank_sell_rate: Optional[str]
    retained_currency: Optional[str]
    status: str
    steps: Dict[str, bool]
    holder_id: Optional[str]
    is_private: bool
    notes: Optional[str]
    created_by: Optional[str]
    profit: str
    profit_overridden: bool
    retained_amount: str
    retained_amount_overridden: bool
    metrics: Dict[str, str]
    created_at: str
    updated_at: str

    @classmethod
    def from_record(cls, record: TransactionRecord) -> "TransactionOut":
        data = record.to_dict()
        data["metrics"] = record.metrics().quantized().to_dict()
        return cls(**data)


class HolderOut(BaseModel):
    id: str
    name: str
    is_investor: bool
    created_by: Optional[str]
    created_at: str

    @classmethod
    def from_holder(cls, holder: Holder) -> "HolderOut":
        return cls(**holder.to_dict())


class NoteOut(BaseModel):
    id: str
    holder_id: str
    content: str
    created_by: Optional[str]
    created_at: str

    @classmethod
    def from_note(cls, note: HolderNote) -> "NoteOut":
        return cls(
            id=note.id,
            holder_id=note.holder_id,
            content=note.content,
            created_by=note.created_by,
            created_at=note.created_at.isoformat(),
        )


class AuditEntryOut(BaseModel):
    id: str
    transaction_id: str
    actor_id: str
    action: str
    changes: Dict[str, Dict[str, Any]]
    created_at: str

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryOut":
        return cls(**entry.to_dict())


class TransactionList(BaseModel):
    count: int
    transactions: List[TransactionOut]
