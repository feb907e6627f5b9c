"""
============================================================================
Transaction Lifecycle Manager Service
============================================================================

Decimal Integrity: All financial inputs are decimal.Decimal
Traceability: Every mutation appends an audit entry (actor_id, transaction_id)

TRANSACTION LIFECYCLE STATE MACHINE:
    Automatic (progress-step) flow:

    PLANNED -> IN_PROGRESS (any progress step set)
    PLANNED/IN_PROGRESS -> COMPLETE (all three progress steps set)

    Terminal States (automatic flow): COMPLETE, CANCELLED

    set_status() is a manual escape hatch: any status is accepted, audited
    and counted, even when it disagrees with the progress steps.

HOLDER RULE:
    A retained transaction without a holder can never reach COMPLETE through
    the step flow. The step change is rejected (TXN-VAL-001) and nothing is
    written. assign_holder_and_mark_paid() attaches the holder and sets
    fiat_paid in a single write.

WRITE POLICY:
    One store request per mutation, last writer wins. The manager always
    returns what the store returned; nothing is cached locally. Audit
    append failures are logged (TXN-AUDIT-001) and counted, never raised.

ERROR CODES:
    - TXN-VAL-001: Holder required before a retained transaction can complete
    - TXN-VAL-002: Invalid field value
    - TXN-VAL-003: Unknown progress step
    - TXN-NF-001: Transaction not found
    - TXN-AUDIT-001: Audit append failed (non-fatal)

============================================================================
"""

from decimal import Decimal
from typing import Optional, Dict, Any, List, Tuple, Union
from datetime import datetime, timezone
from enum import Enum
import logging
import uuid

from app.observability.metrics import (
    record_audit_failure,
    record_status_transition,
    record_transaction_created,
    record_validation_rejection,
)
from services.decimal_gateway import ZERO, to_decimal
from services.display_id import parse_display_id
from services.ledger_errors import (
    LedgerErrorCode,
    LedgerValidationError,
    TransactionNotFoundError,
)
from services.transaction_filters import TransactionFilter
from services.transaction_metrics import (
    SettlementMode,
    StandardSettlement,
    settlement_to_parts,
)
from services.transaction_models import (
    AuditAction,
    AuditEntry,
    ComputedProfit,
    FiatCurrency,
    OverriddenProfit,
    PaymentMethod,
    ProgressStep,
    ProgressSteps,
    TransactionRecord,
    TransactionStatus,
    new_id,
    utc_now,
)
from services.transaction_store import TransactionStore

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class TransactionLifecycleErrorCode:
    """Lifecycle-specific error codes for audit logging."""
    HOLDER_REQUIRED = LedgerErrorCode.HOLDER_REQUIRED
    INVALID_FIELD = LedgerErrorCode.INVALID_FIELD
    UNKNOWN_STEP = LedgerErrorCode.UNKNOWN_STEP
    TRANSACTION_NOT_FOUND = LedgerErrorCode.TRANSACTION_NOT_FOUND
    AUDIT_APPEND_FAIL = LedgerErrorCode.AUDIT_APPEND_FAIL


# =============================================================================
# State Machine
# =============================================================================

# Transitions the step flow may perform on its own.
AUTOMATIC_TRANSITIONS: Dict[TransactionStatus, List[TransactionStatus]] = {
    TransactionStatus.PLANNED: [TransactionStatus.IN_PROGRESS, TransactionStatus.COMPLETE],
    TransactionStatus.IN_PROGRESS: [TransactionStatus.COMPLETE],
    TransactionStatus.COMPLETE: [],
    TransactionStatus.CANCELLED: [],
}

TERMINAL_STATUSES = (TransactionStatus.COMPLETE, TransactionStatus.CANCELLED)

# Fields accepted by update_transaction (card / drawer edit).
EDITABLE_FIELDS = frozenset({
    "fiat_amount",
    "fiat_rate",
    "usdt_amount",
    "usdt_rate",
    "fiat_currency",
    "payment_method",
    "created_at",
    "notes",
    "is_private",
    "holder_id",
})

_AMOUNT_FIELDS = ("fiat_amount", "fiat_rate", "usdt_amount", "usdt_rate")


def derive_status(current: TransactionStatus, steps: ProgressSteps) -> TransactionStatus:
    """
    Status implied by the progress steps, starting from current.

    Terminal statuses are never left automatically and the flow never moves
    backwards when a step is cleared.
    """
    if current in TERMINAL_STATUSES:
        return current
    if steps.all_done:
        candidate = TransactionStatus.COMPLETE
    elif steps.any_done:
        candidate = TransactionStatus.IN_PROGRESS
    else:
        return current
    if candidate in AUTOMATIC_TRANSITIONS[current]:
        return candidate
    return current


def audit_value(value: Any) -> Any:
    """JSON-compatible rendering of a record attribute for audit entries."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, ProgressSteps):
        return value.to_dict()
    if isinstance(value, OverriddenProfit):
        return str(value.value)
    if isinstance(value, ComputedProfit):
        return None
    return value


def _settlement_audit(mode: SettlementMode) -> Dict[str, Any]:
    return {k: audit_value(v) for k, v in settlement_to_parts(mode).items()}


# =============================================================================
# Input Coercion
# =============================================================================

def _reject(message: str, error_code: str, field_name: Optional[str] = None) -> LedgerValidationError:
    record_validation_rejection(error_code)
    logger.warning(f"[{error_code}] {message} | field={field_name}")
    return LedgerValidationError(message, error_code, field_name=field_name)


def _require_amount(name: str, value: Any, allow_negative: bool = False) -> Decimal:
    try:
        amount = to_decimal(value)
    except (ValueError, TypeError):
        raise _reject(
            f"{name} must be a finite decimal number, got: {value!r}",
            TransactionLifecycleErrorCode.INVALID_FIELD,
            name,
        )
    if not allow_negative and amount < ZERO:
        raise _reject(
            f"{name} must not be negative, got: {amount}",
            TransactionLifecycleErrorCode.INVALID_FIELD,
            name,
        )
    return amount


def _optional_amount(name: str, value: Any) -> Optional[Decimal]:
    return None if value is None else _require_amount(name, value)


def _require_enum(name: str, enum_cls: Any, value: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise _reject(
            f"{name} must be one of: {allowed}, got: {value!r}",
            TransactionLifecycleErrorCode.INVALID_FIELD,
            name,
        )


def _require_datetime(name: str, value: Any) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise _reject(
                f"{name} must be an ISO-8601 timestamp, got: {value!r}",
                TransactionLifecycleErrorCode.INVALID_FIELD,
                name,
            )
    if not isinstance(value, datetime):
        raise _reject(
            f"{name} must be a datetime, got: {type(value).__name__}",
            TransactionLifecycleErrorCode.INVALID_FIELD,
            name,
        )
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _parse_step(step: Union[ProgressStep, str]) -> ProgressStep:
    try:
        return ProgressStep(step)
    except ValueError:
        raise _reject(
            f"Unknown progress step: {step!r}",
            TransactionLifecycleErrorCode.UNKNOWN_STEP,
            "step",
        )


# =============================================================================
# TransactionLifecycleManager Class
# =============================================================================

class TransactionLifecycleManager:
    """
    Owns every mutation of a TransactionRecord.

    Input Constraints: store is a TransactionStore; actor_id is recorded in
                       every audit entry
    Side Effects: Store writes, audit entries, Prometheus counters, logging
    """

    def __init__(
        self,
        store: TransactionStore,
        actor_id: str = "system",
        correlation_id: Optional[str] = None
    ) -> None:
        self._store = store
        self._actor_id = actor_id
        self._correlation_id = correlation_id or str(uuid.uuid4())

    @property
    def store(self) -> TransactionStore:
        return self._store

    @property
    def actor_id(self) -> str:
        return self._actor_id

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_transaction(self, transaction_id: str) -> TransactionRecord:
        """
        Raises:
            TransactionNotFoundError: If no record has this id
        """
        record = self._store.get(transaction_id)
        if record is None:
            raise TransactionNotFoundError(transaction_id)
        return record

    def get_by_display_id(self, display_id: str) -> TransactionRecord:
        """
        Resolve "CSH-12", "BNK-12" or "12". Only the sequence number is used
        for the lookup; the prefix is cosmetic.
        """
        sequence_id = parse_display_id(display_id)
        record = self._store.get_by_sequence(sequence_id)
        if record is None:
            raise TransactionNotFoundError(display_id)
        return record

    def list_transactions(
        self,
        transaction_filter: Optional[TransactionFilter] = None,
        ascending: bool = False
    ) -> List[TransactionRecord]:
        return self._store.list(transaction_filter, ascending=ascending)

    def list_audit(self, transaction_id: str) -> List[AuditEntry]:
        self.get_transaction(transaction_id)
        return self._store.list_audit(transaction_id)

    # -------------------------------------------------------------------------
    # Create / Delete
    # -------------------------------------------------------------------------

    def create_transaction(
        self,
        fiat_amount: Any,
        fiat_rate: Any,
        usdt_amount: Any,
        usdt_rate: Any,
        fiat_currency: Union[FiatCurrency, str] = FiatCurrency.GBP,
        payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
        settlement: Optional[SettlementMode] = None,
        holder_id: Optional[str] = None,
        is_private: bool = True,
        notes: Optional[str] = None,
        created_at: Optional[datetime] = None,
        forex_rate: Any = None,
        crypto_rate: Any = None,
        revolut_fee: Any = None,
        kraken_fee: Any = None
    ) -> TransactionRecord:
        """
        Create a PLANNED transaction. The store assigns the sequence id.

        Raises:
            LedgerValidationError: If any input is invalid (nothing written)
            LedgerStoreError: If the insert fails
        """
        if holder_id is not None:
            self._require_holder(holder_id)

        record = TransactionRecord(
            id=new_id(),
            fiat_amount=_require_amount("fiat_amount", fiat_amount),
            fiat_rate=_require_amount("fiat_rate", fiat_rate),
            usdt_amount=_require_amount("usdt_amount", usdt_amount),
            usdt_rate=_require_amount("usdt_rate", usdt_rate),
            fiat_currency=_require_enum("fiat_currency", FiatCurrency, fiat_currency),
            payment_method=_require_enum("payment_method", PaymentMethod, payment_method),
            settlement=settlement or StandardSettlement(),
            status=TransactionStatus.PLANNED,
            holder_id=holder_id,
            is_private=bool(is_private),
            notes=notes,
            created_by=self._actor_id,
            forex_rate=_optional_amount("forex_rate", forex_rate),
            crypto_rate=_optional_amount("crypto_rate", crypto_rate),
            revolut_fee=_optional_amount("revolut_fee", revolut_fee),
            kraken_fee=_optional_amount("kraken_fee", kraken_fee),
        )
        if created_at is not None:
            stamp = _require_datetime("created_at", created_at)
            record.created_at = stamp
            record.updated_at = stamp

        stored = self._store.insert(record)

        record_transaction_created(
            stored.payment_method.value,
            stored.settlement.kind.value,
            self._correlation_id,
        )
        logger.info(
            f"[TXN-LIFECYCLE] Transaction created | "
            f"transaction_id={stored.id} | "
            f"display_id={stored.display_id} | "
            f"settlement_mode={stored.settlement.kind.value} | "
            f"actor={self._actor_id} | "
            f"correlation_id={self._correlation_id}"
        )
        self._append_audit(stored.id, AuditAction.CREATE, {}, stored.to_dict())
        return stored

    def delete_transaction(self, transaction_id: str) -> None:
        """
        Raises:
            TransactionNotFoundError: If no record has this id
        """
        current = self.get_transaction(transaction_id)
        self._store.delete(transaction_id)
        logger.info(
            f"[TXN-LIFECYCLE] Transaction deleted | "
            f"transaction_id={transaction_id} | "
            f"display_id={current.display_id} | "
            f"actor={self._actor_id} | "
            f"correlation_id={self._correlation_id}"
        )
        self._append_audit(transaction_id, AuditAction.DELETE, current.to_dict(), {})

    # -------------------------------------------------------------------------
    # Progress Steps
    # -------------------------------------------------------------------------

    def toggle_step(
        self,
        transaction_id: str,
        step: Union[ProgressStep, str]
    ) -> TransactionRecord:
        """Flip one progress step (the card checkbox)."""
        step = _parse_step(step)
        current = self.get_transaction(transaction_id)
        return self._apply_step(current, step, not current.steps.get(step))

    def set_step(
        self,
        transaction_id: str,
        step: Union[ProgressStep, str],
        value: bool
    ) -> TransactionRecord:
        """
        Set one progress step and derive the status.

        Raises:
            LedgerValidationError: TXN-VAL-003 for an unknown step,
                                   TXN-VAL-001 if the change would complete a
                                   retained transaction with no holder
        """
        step = _parse_step(step)
        current = self.get_transaction(transaction_id)
        return self._apply_step(current, step, bool(value))

    def _apply_step(
        self,
        current: TransactionRecord,
        step: ProgressStep,
        value: bool
    ) -> TransactionRecord:
        steps = current.steps.with_step(step, value)
        if steps == current.steps:
            return current

        status = derive_status(current.status, steps)
        self._guard_holder(current, current.holder_id, status)

        stored = self._store.update(current.id, {"steps": steps, "status": status})
        self._after_status_change(current.status, stored.status, "steps", stored.id)
        self._append_audit(
            stored.id,
            AuditAction.UPDATE_PROGRESS,
            {"steps": current.steps.to_dict(), "status": current.status.value},
            {"steps": stored.steps.to_dict(), "status": stored.status.value},
        )
        return stored

    def assign_holder_and_mark_paid(
        self,
        transaction_id: str,
        holder_id: str
    ) -> TransactionRecord:
        """
        Attach a holder and set fiat_paid in one write, deriving the status.

        Raises:
            LedgerValidationError: If the holder does not exist
        """
        self._require_holder(holder_id)
        current = self.get_transaction(transaction_id)

        steps = current.steps.with_step(ProgressStep.FIAT_PAID, True)
        status = derive_status(current.status, steps)

        stored = self._store.update(
            current.id,
            {"holder_id": holder_id, "steps": steps, "status": status},
        )
        self._after_status_change(current.status, stored.status, "steps", stored.id)
        self._append_audit(
            stored.id,
            AuditAction.ASSIGN_HOLDER,
            {
                "holder_id": current.holder_id,
                "steps": current.steps.to_dict(),
                "status": current.status.value,
            },
            {
                "holder_id": stored.holder_id,
                "steps": stored.steps.to_dict(),
                "status": stored.status.value,
            },
        )
        return stored

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def set_status(
        self,
        transaction_id: str,
        status: Union[TransactionStatus, str]
    ) -> TransactionRecord:
        """
        Manual status change. Accepted as-is, regardless of progress steps.
        """
        status = _require_enum("status", TransactionStatus, status)
        current = self.get_transaction(transaction_id)
        if status is current.status:
            return current

        stored = self._store.update(current.id, {"status": status})
        self._after_status_change(current.status, stored.status, "manual", stored.id)
        self._append_audit(
            stored.id,
            AuditAction.UPDATE_STATUS,
            {"status": current.status.value},
            {"status": stored.status.value},
        )
        return stored

    # -------------------------------------------------------------------------
    # Field Edits
    # -------------------------------------------------------------------------

    def update_transaction(
        self,
        transaction_id: str,
        changes: Dict[str, Any]
    ) -> TransactionRecord:
        """
        Card / drawer edit of inputs, payment method, date, notes, privacy
        and holder.

        Only attributes whose value actually changes are written and audited.
        An edit that changes nothing is a no-op (no write, no audit entry).

        Raises:
            LedgerValidationError: Unknown field or invalid value (nothing written)
        """
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise _reject(
                f"Fields cannot be edited: {', '.join(unknown)}",
                TransactionLifecycleErrorCode.INVALID_FIELD,
                unknown[0],
            )

        normalized = self._normalize_changes(changes)
        current = self.get_transaction(transaction_id)

        partial = {
            name: value for name, value in normalized.items()
            if getattr(current, name) != value
        }
        if not partial:
            logger.debug(
                f"[TXN-LIFECYCLE] Edit without changes ignored | "
                f"transaction_id={transaction_id}"
            )
            return current

        if "holder_id" in partial and partial["holder_id"] is not None:
            self._require_holder(partial["holder_id"])

        stored = self._store.update(current.id, partial)
        logger.info(
            f"[TXN-LIFECYCLE] Transaction updated | "
            f"transaction_id={stored.id} | "
            f"fields={','.join(sorted(partial))} | "
            f"actor={self._actor_id} | "
            f"correlation_id={self._correlation_id}"
        )
        self._append_audit(
            stored.id,
            AuditAction.UPDATE,
            {name: audit_value(getattr(current, name)) for name in sorted(partial)},
            {name: audit_value(getattr(stored, name)) for name in sorted(partial)},
        )
        return stored

    def _normalize_changes(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        normalized: Dict[str, Any] = {}
        for name, value in changes.items():
            if name in _AMOUNT_FIELDS:
                normalized[name] = _require_amount(name, value)
            elif name == "fiat_currency":
                normalized[name] = _require_enum(name, FiatCurrency, value)
            elif name == "payment_method":
                normalized[name] = _require_enum(name, PaymentMethod, value)
            elif name == "created_at":
                normalized[name] = _require_datetime(name, value)
            elif name == "is_private":
                normalized[name] = bool(value)
            elif name == "notes":
                normalized[name] = value if value else None
            else:
                normalized[name] = value or None
        return normalized

    def set_settlement_mode(
        self,
        transaction_id: str,
        settlement: SettlementMode
    ) -> TransactionRecord:
        current = self.get_transaction(transaction_id)
        if settlement == current.settlement:
            return current

        stored = self._store.update(current.id, {"settlement": settlement})
        logger.info(
            f"[TXN-LIFECYCLE] Settlement mode changed | "
            f"transaction_id={stored.id} | "
            f"from={current.settlement.kind.value} | "
            f"to={stored.settlement.kind.value} | "
            f"correlation_id={self._correlation_id}"
        )
        self._append_audit(
            stored.id,
            AuditAction.UPDATE_SETTLEMENT,
            _settlement_audit(current.settlement),
            _settlement_audit(stored.settlement),
        )
        return stored

    # -------------------------------------------------------------------------
    # Overrides
    # -------------------------------------------------------------------------

    def override_profit(self, transaction_id: str, value: Any) -> TransactionRecord:
        """Replace the computed profit with a manual figure (may be negative)."""
        amount = _require_amount("profit", value, allow_negative=True)
        current = self.get_transaction(transaction_id)
        figure = OverriddenProfit(amount)
        if figure == current.profit_figure:
            return current

        stored = self._store.update(current.id, {"profit_figure": figure})
        self._append_audit(
            stored.id,
            AuditAction.OVERRIDE_PROFIT,
            {"profit": str(current.effective_profit()), "profit_overridden": current.profit_figure.is_override},
            {"profit": str(stored.effective_profit()), "profit_overridden": True},
        )
        return stored

    def reset_profit(self, transaction_id: str) -> TransactionRecord:
        """Return to the engine-computed profit."""
        current = self.get_transaction(transaction_id)
        if not current.profit_figure.is_override:
            return current

        stored = self._store.update(current.id, {"profit_figure": ComputedProfit()})
        self._append_audit(
            stored.id,
            AuditAction.RESET_PROFIT,
            {"profit": str(current.effective_profit()), "profit_overridden": True},
            {"profit": str(stored.effective_profit()), "profit_overridden": False},
        )
        return stored

    def override_retained_amount(self, transaction_id: str, value: Any) -> TransactionRecord:
        """
        Manually set the retained amount. Negative input is clamped to 0.

        Raises:
            LedgerValidationError: If the transaction is not in Retained mode
        """
        amount = max(ZERO, _require_amount("retained_amount", value, allow_negative=True))
        current = self.get_transaction(transaction_id)
        if not current.is_retained:
            raise _reject(
                "Retained amount can only be set on a retained transaction",
                TransactionLifecycleErrorCode.INVALID_FIELD,
                "retained_amount",
            )
        if current.retained_amount_override == amount:
            return current

        stored = self._store.update(current.id, {"retained_amount_override": amount})
        self._append_audit(
            stored.id,
            AuditAction.OVERRIDE_RETAINED,
            {"retained_amount": str(current.retained_amount())},
            {"retained_amount": str(stored.retained_amount())},
        )
        return stored

    def reset_retained_amount(self, transaction_id: str) -> TransactionRecord:
        current = self.get_transaction(transaction_id)
        if current.retained_amount_override is None:
            return current

        stored = self._store.update(current.id, {"retained_amount_override": None})
        self._append_audit(
            stored.id,
            AuditAction.RESET_RETAINED,
            {"retained_amount": str(current.retained_amount())},
            {"retained_amount": str(stored.retained_amount())},
        )
        return stored

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_holder(self, holder_id: str) -> None:
        if self._store.get_holder(holder_id) is None:
            raise _reject(
                f"Holder does not exist: {holder_id}",
                TransactionLifecycleErrorCode.INVALID_FIELD,
                "holder_id",
            )

    def _guard_holder(
        self,
        current: TransactionRecord,
        holder_id: Optional[str],
        new_status: TransactionStatus
    ) -> None:
        completing = (
            new_status is TransactionStatus.COMPLETE
            and current.status is not TransactionStatus.COMPLETE
        )
        if completing and current.is_retained and holder_id is None:
            raise _reject(
                f"Retained transaction {current.display_id or current.id} "
                f"needs a holder before it can complete",
                TransactionLifecycleErrorCode.HOLDER_REQUIRED,
                "holder_id",
            )

    def _after_status_change(
        self,
        old_status: TransactionStatus,
        new_status: TransactionStatus,
        source: str,
        transaction_id: str
    ) -> None:
        if old_status is new_status:
            return
        record_status_transition(old_status.value, new_status.value, source)
        logger.info(
            f"[TXN-LIFECYCLE] Status transition | "
            f"transaction_id={transaction_id} | "
            f"from={old_status.value} | "
            f"to={new_status.value} | "
            f"source={source} | "
            f"actor={self._actor_id} | "
            f"correlation_id={self._correlation_id}"
        )

    def _append_audit(
        self,
        transaction_id: str,
        action: AuditAction,
        old: Dict[str, Any],
        new: Dict[str, Any]
    ) -> None:
        entry = AuditEntry(
            transaction_id=transaction_id,
            actor_id=self._actor_id,
            action=action,
            changes={"old": old, "new": new},
        )
        try:
            self._store.append_audit(entry)
        except Exception as e:
            # Audit is best-effort: the mutation already succeeded.
            record_audit_failure(action.value)
            logger.error(
                f"[{TransactionLifecycleErrorCode.AUDIT_APPEND_FAIL}] Audit append failed | "
                f"transaction_id={transaction_id} | "
                f"action={action.value} | "
                f"actor={self._actor_id} | "
                f"error={e} | "
                f"correlation_id={self._correlation_id}"
            )


__all__ = [
    "TransactionLifecycleErrorCode",
    "AUTOMATIC_TRANSITIONS",
    "TERMINAL_STATUSES",
    "EDITABLE_FIELDS",
    "derive_status",
    "audit_value",
    "TransactionLifecycleManager",
]
