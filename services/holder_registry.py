"""
============================================================================
Arbitrage Ledger - Holder Registry
============================================================================

Holders are the counterparties that receive settled fiat or keep retained
capital offshore. Names are trimmed, non-empty and unique. Deleting a holder
never deletes transactions; the store clears their holder_id.

ERROR CODES:
    - TXN-VAL-004: Duplicate holder name
    - TXN-VAL-005: Holder name required
    - TXN-NF-002: Holder not found

============================================================================
"""

from typing import List, Optional
import logging

from app.observability.metrics import record_validation_rejection
from services.ledger_errors import (
    HolderNotFoundError,
    LedgerErrorCode,
    LedgerValidationError,
)
from services.transaction_models import Holder, HolderNote, new_id
from services.transaction_store import TransactionStore

logger = logging.getLogger(__name__)


def normalize_holder_name(name: Optional[str]) -> str:
    """
    Raises:
        LedgerValidationError: If the trimmed name is empty
    """
    cleaned = (name or "").strip()
    if not cleaned:
        record_validation_rejection(LedgerErrorCode.HOLDER_NAME_REQUIRED)
        raise LedgerValidationError(
            "Holder name is required",
            LedgerErrorCode.HOLDER_NAME_REQUIRED,
            field_name="name",
        )
    return cleaned


class HolderRegistry:
    """CRUD over holders and their notes."""

    def __init__(self, store: TransactionStore, actor_id: str = "system") -> None:
        self._store = store
        self._actor_id = actor_id

    def list_holders(self) -> List[Holder]:
        return self._store.list_holders()

    def get_holder(self, holder_id: str) -> Holder:
        holder = self._store.get_holder(holder_id)
        if holder is None:
            raise HolderNotFoundError(holder_id)
        return holder

    def create_holder(self, name: str, is_investor: bool = False) -> Holder:
        holder = Holder(
            id=new_id(),
            name=normalize_holder_name(name),
            is_investor=bool(is_investor),
            created_by=self._actor_id,
        )
        try:
            stored = self._store.insert_holder(holder)
        except LedgerValidationError as e:
            record_validation_rejection(e.error_code)
            raise
        logger.info(
            f"[LEDGER-HOLDERS] Holder created | holder_id={stored.id} | "
            f"is_investor={stored.is_investor} | actor={self._actor_id}"
        )
        return stored

    def rename_holder(self, holder_id: str, name: str) -> Holder:
        cleaned = normalize_holder_name(name)
        try:
            return self._store.update_holder(holder_id, {"name": cleaned})
        except LedgerValidationError as e:
            record_validation_rejection(e.error_code)
            raise

    def set_investor(self, holder_id: str, is_investor: bool) -> Holder:
        return self._store.update_holder(holder_id, {"is_investor": bool(is_investor)})

    def delete_holder(self, holder_id: str) -> None:
        if not self._store.delete_holder(holder_id):
            raise HolderNotFoundError(holder_id)
        logger.info(
            f"[LEDGER-HOLDERS] Holder deleted | holder_id={holder_id} | "
            f"actor={self._actor_id}"
        )

    # -- notes ---------------------------------------------------------------

    def add_note(self, holder_id: str, content: str) -> HolderNote:
        text = (content or "").strip()
        if not text:
            record_validation_rejection(LedgerErrorCode.INVALID_FIELD)
            raise LedgerValidationError(
                "Note content is required",
                LedgerErrorCode.INVALID_FIELD,
                field_name="content",
            )
        return self._store.add_holder_note(
            HolderNote(
                id=new_id(),
                holder_id=holder_id,
                content=text,
                created_by=self._actor_id,
            )
        )

    def list_notes(self, holder_id: str) -> List[HolderNote]:
        self.get_holder(holder_id)
        return self._store.list_holder_notes(holder_id)


__all__ = [
    "normalize_holder_name",
    "HolderRegistry",
]
