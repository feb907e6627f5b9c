# ============================================================================
# Arbitrage Ledger
# Calculator API Endpoints
# ============================================================================
#
# Endpoints:
#   POST /api/calculator/preview  - price a calculator form (no side effects)
#   POST /api/calculator/save     - persist the form as a PLANNED transaction
#
# ============================================================================

from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from app.api.dependencies import get_lifecycle_manager
from app.schemas.transaction import CalculatorRequest, TransactionOut
from services.calculator import CalculatorInput, quote, save_quote
from services.transaction_lifecycle import TransactionLifecycleManager

router = APIRouter()


def _to_input(body: CalculatorRequest) -> CalculatorInput:
    # Unset optional rates keep the calculator defaults.
    values = body.model_dump(exclude_none=True)
    return CalculatorInput(**values)


@router.post("/preview", tags=["Calculator"])
def preview(body: CalculatorRequest) -> Dict[str, Any]:
    return quote(_to_input(body)).to_dict()


@router.post(
    "/save",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Calculator"],
)
def save(
    body: CalculatorRequest,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    return TransactionOut.from_record(save_quote(manager, _to_input(body)))
