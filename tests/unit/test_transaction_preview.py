"""
Unit Tests for the Social Preview Page
"""

from datetime import datetime, timezone
from decimal import Decimal

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.transaction_models import (
    FiatCurrency,
    OverriddenProfit,
    PaymentMethod,
    TransactionRecord,
)
from services.transaction_preview import (
    preview_description,
    preview_title,
    render_preview_page,
)


def _record(**overrides) -> TransactionRecord:
    values = dict(
        id="txn-1",
        sequence_id=12,
        fiat_amount=Decimal("1000"),
        fiat_rate=Decimal("7.5"),
        usdt_amount=Decimal("1500"),
        usdt_rate=Decimal("6.1"),
        fiat_currency=FiatCurrency.EUR,
        payment_method=PaymentMethod.BANK,
        created_at=datetime(2024, 5, 10, 9, 30, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return TransactionRecord(**values)


class TestPreviewText:

    def test_title_uses_requested_id_and_profit(self):
        assert preview_title("BNK-12", _record()) == "Transaction BNK-12 - 1650.00 Profit"

    def test_title_uses_override(self):
        record = _record(profit_figure=OverriddenProfit(Decimal("-3.456")))
        assert preview_title("12", record) == "Transaction 12 - -3.46 Profit"

    def test_description(self):
        assert preview_description(_record()) == "EUR | bank | 2024-05-10"


class TestRenderPage:

    def test_open_graph_and_redirect(self):
        page = render_preview_page(
            "BNK-12", _record(), "https://ledger.example.com/", "https://api.example.com/preview?id=BNK-12"
        )

        assert '<meta property="og:title" content="Transaction BNK-12 - 1650.00 Profit" />' in page
        assert '<meta property="og:description" content="EUR | bank | 2024-05-10" />' in page
        assert 'content="0;url=https://ledger.example.com/t/BNK-12"' in page
        assert 'window.location.href = "https://ledger.example.com/t/BNK-12"' in page
        assert "Redirecting to transaction details..." in page

    def test_values_are_escaped(self):
        page = render_preview_page(
            '"><script>alert(1)</script>', _record(), "https://ledger.example.com", "https://x/?a=1&b=2"
        )

        assert "<script>alert(1)</script>" not in page
        assert "&lt;script&gt;" in page
        assert "https://x/?a=1&amp;b=2" in page
