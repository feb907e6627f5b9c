"""
============================================================================
Arbitrage Ledger - Services Layer
============================================================================

Metrics engine, transaction lifecycle, holders, reports and the record
stores they run on.

============================================================================
"""

from services.ledger_errors import (
    LedgerErrorCode,
    LedgerError,
    LedgerValidationError,
    LedgerNotFoundError,
    LedgerStoreError,
)

from services.transaction_metrics import (
    SettlementKind,
    RetainedCurrency,
    StandardSettlement,
    HybridSettlement,
    RetainedSettlement,
    MetricsInput,
    TransactionMetrics,
    compute_metrics,
)

from services.transaction_models import (
    TransactionStatus,
    PaymentMethod,
    FiatCurrency,
    ProgressStep,
    TransactionRecord,
    Holder,
)

from services.transaction_store import (
    TransactionStore,
    InMemoryTransactionStore,
)

from services.transaction_lifecycle import TransactionLifecycleManager
from services.holder_registry import HolderRegistry

__all__ = [
    # Errors
    "LedgerErrorCode",
    "LedgerError",
    "LedgerValidationError",
    "LedgerNotFoundError",
    "LedgerStoreError",
    # Metrics engine
    "SettlementKind",
    "RetainedCurrency",
    "StandardSettlement",
    "HybridSettlement",
    "RetainedSettlement",
    "MetricsInput",
    "TransactionMetrics",
    "compute_metrics",
    # Records
    "TransactionStatus",
    "PaymentMethod",
    "FiatCurrency",
    "ProgressStep",
    "TransactionRecord",
    "Holder",
    # Stores and managers
    "TransactionStore",
    "InMemoryTransactionStore",
    "TransactionLifecycleManager",
    "HolderRegistry",
]
