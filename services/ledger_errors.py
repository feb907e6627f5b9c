"""
============================================================================
Arbitrage Ledger - Error Taxonomy
============================================================================

Failures are categorized so callers can react differently:

    VALIDATION   -> block the action, show the message (no state mutation)
    STORE        -> surface to the caller, caller decides whether to re-issue
    RATE         -> degrade silently to a fallback or default value
    AUDIT        -> log for operator visibility, never roll back

ERROR CODES:
    - TXN-VAL-001: Holder required before a retained transaction can complete
    - TXN-VAL-002: Invalid field value
    - TXN-VAL-003: Unknown progress step
    - TXN-VAL-004: Duplicate holder name
    - TXN-VAL-005: Holder name required
    - TXN-VAL-006: Invalid display id
    - TXN-NF-001: Transaction not found
    - TXN-NF-002: Holder not found
    - TXN-STORE-001: Store write failed
    - TXN-STORE-002: Store read failed
    - TXN-AUDIT-001: Audit log append failed (non-fatal)
    - RATE-001: Primary rate source failed
    - RATE-002: Fallback rate source failed

============================================================================
"""

from typing import Optional


class LedgerErrorCode:
    """Ledger-wide error codes for audit logging."""
    HOLDER_REQUIRED = "TXN-VAL-001"
    INVALID_FIELD = "TXN-VAL-002"
    UNKNOWN_STEP = "TXN-VAL-003"
    DUPLICATE_HOLDER = "TXN-VAL-004"
    HOLDER_NAME_REQUIRED = "TXN-VAL-005"
    INVALID_DISPLAY_ID = "TXN-VAL-006"
    TRANSACTION_NOT_FOUND = "TXN-NF-001"
    HOLDER_NOT_FOUND = "TXN-NF-002"
    STORE_WRITE_FAIL = "TXN-STORE-001"
    STORE_READ_FAIL = "TXN-STORE-002"
    AUDIT_APPEND_FAIL = "TXN-AUDIT-001"
    RATE_PRIMARY_FAIL = "RATE-001"
    RATE_FALLBACK_FAIL = "RATE-002"


class LedgerError(Exception):
    """
    Base class for all categorized ledger failures.

    Attributes:
        error_code: Ledger error code (see LedgerErrorCode)
        message: Human-readable message, safe to show to a user
    """

    category = "ledger"

    def __init__(self, message: str, error_code: str) -> None:
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


class LedgerValidationError(LedgerError):
    """Rejected synchronously; no field was mutated."""

    category = "validation"

    def __init__(
        self,
        message: str,
        error_code: str = LedgerErrorCode.INVALID_FIELD,
        field_name: Optional[str] = None
    ) -> None:
        self.field_name = field_name
        super().__init__(message, error_code)


class LedgerNotFoundError(LedgerError):
    """A referenced record does not exist in the store."""

    category = "not_found"


class TransactionNotFoundError(LedgerNotFoundError):

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(
            f"Transaction not found: {transaction_id}",
            LedgerErrorCode.TRANSACTION_NOT_FOUND,
        )


class HolderNotFoundError(LedgerNotFoundError):

    def __init__(self, holder_id: str) -> None:
        self.holder_id = holder_id
        super().__init__(
            f"Holder not found: {holder_id}",
            LedgerErrorCode.HOLDER_NOT_FOUND,
        )


class LedgerStoreError(LedgerError):
    """Transient store/network failure. The core never retries."""

    category = "store"

    def __init__(
        self,
        message: str,
        error_code: str = LedgerErrorCode.STORE_WRITE_FAIL
    ) -> None:
        super().__init__(message, error_code)


class RateFetchError(LedgerError):
    """
    External rate source failure.

    Raised only inside the rate service, which always converts it into a
    fallback value before returning to a caller.
    """

    category = "external_rate"

    def __init__(
        self,
        message: str,
        error_code: str = LedgerErrorCode.RATE_PRIMARY_FAIL
    ) -> None:
        super().__init__(message, error_code)


__all__ = [
    "LedgerErrorCode",
    "LedgerError",
    "LedgerValidationError",
    "LedgerNotFoundError",
    "TransactionNotFoundError",
    "HolderNotFoundError",
    "LedgerStoreError",
    "RateFetchError",
]
