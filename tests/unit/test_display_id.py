"""
Unit Tests for Display Identifiers

Error Codes:
- TXN-VAL-006: Invalid display id
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.display_id import format_display_id, parse_display_id
from services.ledger_errors import LedgerErrorCode, LedgerValidationError
from services.transaction_models import PaymentMethod


class TestFormatDisplayId:

    def test_cash_prefix(self):
        assert format_display_id(12, PaymentMethod.CASH) == "CSH-12"

    def test_bank_prefix(self):
        assert format_display_id(12, PaymentMethod.BANK) == "BNK-12"
        assert format_display_id(3, "bank") == "BNK-3"

    def test_unassigned_sequence_is_empty(self):
        assert format_display_id(None, PaymentMethod.CASH) == ""


class TestParseDisplayId:

    @pytest.mark.parametrize("value,expected", [
        ("CSH-12", 12),
        ("BNK-12", 12),
        ("bnk-7", 7),
        ("12", 12),
        (" 42 ", 42),
    ])
    def test_valid(self, value, expected):
        assert parse_display_id(value) == expected

    def test_prefix_does_not_have_to_match_method(self):
        # The sequence number alone identifies the record
        assert parse_display_id("CSH-5") == parse_display_id("BNK-5")

    @pytest.mark.parametrize("value", ["", None, "CSH-", "abc", "CSH-0", "-5", "1.5"])
    def test_invalid(self, value):
        with pytest.raises(LedgerValidationError) as exc_info:
            parse_display_id(value)
        assert exc_info.value.error_code == LedgerErrorCode.INVALID_DISPLAY_ID
