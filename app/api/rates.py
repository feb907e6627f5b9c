# ============================================================================
# Arbitrage Ledger
# Rate API Endpoints
# ============================================================================
#
# Endpoints:
#   GET /api/rates/{base}  - composite fiat -> USDT rate for GBP or EUR
#
# The rate service never fails the request: when every source is down the
# last good quote (or composite_rate=0, source=unavailable) is returned.
#
# ============================================================================

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import get_rate_service
from services.ledger_errors import LedgerErrorCode
from services.rate_service import RateService
from services.transaction_models import FiatCurrency

router = APIRouter()


@router.get("/{base}", tags=["Rates"])
async def get_rate(
    base: str,
    service: RateService = Depends(get_rate_service),
) -> Dict[str, Any]:
    try:
        currency = FiatCurrency(base.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "error_code": LedgerErrorCode.INVALID_FIELD,
                "message": f"Unsupported base currency: {base}",
            },
        )
    quote = await service.get_composite_rate(currency)
    return quote.to_dict()
