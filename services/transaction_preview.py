"""
============================================================================
Arbitrage Ledger - Social Preview Page
============================================================================

Input Constraints: Display id as sent in a shared link (CSH-12, BNK-12, 12)
Side Effects: None (pure rendering)

Renders the small HTML page a chat client fetches when a transaction link
is shared: Open Graph title/description for the link card, then an
immediate redirect to the transaction page of the web app.

============================================================================
"""

import html
from decimal import ROUND_HALF_EVEN

from services.decimal_gateway import LYD_PRECISION
from services.transaction_models import TransactionRecord


def preview_title(requested_id: str, record: TransactionRecord) -> str:
    profit = record.effective_profit().quantize(LYD_PRECISION, rounding=ROUND_HALF_EVEN)
    return f"Transaction {requested_id} - {profit} Profit"


def preview_description(record: TransactionRecord) -> str:
    return (
        f"{record.fiat_currency.value} | {record.payment_method.value} | "
        f"{record.created_at.date().isoformat()}"
    )


def render_preview_page(
    requested_id: str,
    record: TransactionRecord,
    app_url: str,
    page_url: str
) -> str:
    """
    Build the preview page. Every interpolated value is HTML-escaped;
    the redirect target is {app_url}/t/{requested_id}.
    """
    title = html.escape(preview_title(requested_id, record))
    description = html.escape(preview_description(record))
    redirect_url = html.escape(f"{app_url.rstrip('/')}/t/{requested_id}")
    og_url = html.escape(page_url)

    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '    <meta charset="UTF-8">\n'
        '    <meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        f"    <title>{title}</title>\n"
        f'    <meta property="og:title" content="{title}" />\n'
        f'    <meta property="og:description" content="{description}" />\n'
        '    <meta property="og:type" content="website" />\n'
        f'    <meta property="og:url" content="{og_url}" />\n'
        f'    <meta http-equiv="refresh" content="0;url={redirect_url}">\n'
        f'    <script>window.location.href = "{redirect_url}";</script>\n'
        "</head>\n"
        "<body>\n"
        "    Redirecting to transaction details...\n"
        "</body>\n"
        "</html>"
    )


__all__ = [
    "preview_title",
    "preview_description",
    "render_preview_page",
]
