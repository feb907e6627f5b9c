"""
Display identifiers for transactions.

A display id combines a payment-method prefix with the store-assigned
sequence number: CSH-12 for cash, BNK-12 for anything else. Parsing accepts
the prefixed form or a bare number.
"""

import re
from typing import Optional, Union

from services.ledger_errors import LedgerErrorCode, LedgerValidationError

CASH_PREFIX = "CSH"
BANK_PREFIX = "BNK"

_DISPLAY_ID_PATTERN = re.compile(r"^\s*(?:([A-Za-z]+)-)?(\d+)\s*$")


def display_prefix(payment_method: Union[str, object]) -> str:
    value = getattr(payment_method, "value", payment_method)
    return CASH_PREFIX if value == "cash" else BANK_PREFIX


def format_display_id(sequence_id: Optional[int], payment_method: Union[str, object]) -> str:
    """Return "" until the store has assigned a sequence number."""
    if not sequence_id:
        return ""
    return f"{display_prefix(payment_method)}-{sequence_id}"


def parse_display_id(display_id: Optional[str]) -> int:
    """
    Parse "CSH-12", "BNK-12" or "12" back into the sequence number.

    Raises:
        LedgerValidationError: If the value carries no positive sequence number
    """
    match = _DISPLAY_ID_PATTERN.match(display_id or "")
    if match is None or int(match.group(2)) <= 0:
        raise LedgerValidationError(
            f"Invalid display id: {display_id!r}",
            LedgerErrorCode.INVALID_DISPLAY_ID,
            field_name="display_id",
        )
    return int(match.group(2))
