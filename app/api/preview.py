# ============================================================================
# Arbitrage Ledger
# Link Preview Endpoint
# ============================================================================
#
# Endpoints:
#   GET /preview?id=CSH-12  - Open Graph page that redirects to the web app
#
# Error Codes:
#   400: id missing
#   404: id unparseable or no such transaction
#
# ============================================================================

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, PlainTextResponse

from app.api.dependencies import get_lifecycle_manager
from services.ledger_config import get_ledger_config
from services.ledger_errors import LedgerNotFoundError, LedgerValidationError
from services.transaction_lifecycle import TransactionLifecycleManager
from services.transaction_preview import render_preview_page

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/preview", response_class=HTMLResponse, tags=["Preview"])
def transaction_preview(
    request: Request,
    id: Optional[str] = Query(None),
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
):
    if not id:
        return PlainTextResponse("Missing transaction ID", status_code=400)

    try:
        record = manager.get_by_display_id(id)
    except (LedgerValidationError, LedgerNotFoundError) as e:
        logger.info(f"[LEDGER-PREVIEW] Preview miss | id={id} | error_code={e.error_code}")
        return PlainTextResponse("Transaction not found", status_code=404)

    page = render_preview_page(
        id,
        record,
        app_url=get_ledger_config().app_url,
        page_url=str(request.url),
    )
    return HTMLResponse(content=page)
