# ============================================================================
# Arbitrage Ledger
# Pydantic Schemas - Data Validation Layer
# ============================================================================

from app.schemas.transaction import (
    TransactionCreate,
    TransactionUpdate,
    TransactionOut,
    HolderOut,
    NoteOut,
    AuditEntryOut,
)

__all__ = [
    "TransactionCreate",
    "TransactionUpdate",
    "TransactionOut",
    "HolderOut",
    "NoteOut",
    "AuditEntryOut",
]
