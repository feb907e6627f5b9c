# ============================================================================
# Arbitrage Ledger
# Transaction API Endpoints
# ============================================================================
#
# Endpoints:
#   GET    /api/transactions                          - filtered list
#   POST   /api/transactions                          - create (PLANNED)
#   GET    /api/transactions/by-display-id/{id}       - lookup by CSH-12 / BNK-12 / 12
#   GET    /api/transactions/{id}                     - single record + metrics
#   PATCH  /api/transactions/{id}                     - card / drawer edit
#   DELETE /api/transactions/{id}                     - delete
#   POST   /api/transactions/{id}/steps/{step}        - set or toggle a progress step
#   PUT    /api/transactions/{id}/holder              - assign holder + mark fiat paid
#   PUT    /api/transactions/{id}/status              - manual status
#   PUT    /api/transactions/{id}/settlement          - settlement mode
#   PUT    /api/transactions/{id}/profit-override     - manual profit
#   DELETE /api/transactions/{id}/profit-override     - back to computed profit
#   PUT    /api/transactions/{id}/retained-override   - manual retained amount
#   DELETE /api/transactions/{id}/retained-override   - back to computed amount
#   GET    /api/transactions/{id}/audit               - audit trail
#
# Ledger errors are mapped to HTTP by the handlers registered in app.main.
#
# ============================================================================

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.dependencies import build_filter, get_filter_query, get_lifecycle_manager
from app.schemas.transaction import (
    AuditEntryOut,
    FilterQuery,
    HolderAssignment,
    OverrideValue,
    SettlementIn,
    StatusUpdate,
    StepUpdate,
    TransactionCreate,
    TransactionList,
    TransactionOut,
    TransactionUpdate,
)
from services.transaction_lifecycle import TransactionLifecycleManager

router = APIRouter()


@router.get("", response_model=TransactionList, tags=["Transactions"])
def list_transactions(
    query: FilterQuery = Depends(get_filter_query),
    ascending: bool = Query(False),
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionList:
    records = manager.list_transactions(build_filter(query), ascending=ascending)
    return TransactionList(
        count=len(records),
        transactions=[TransactionOut.from_record(r) for r in records],
    )


@router.post(
    "",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Transactions"],
)
def create_transaction(
    body: TransactionCreate,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    record = manager.create_transaction(
        fiat_amount=body.fiat_amount,
        fiat_rate=body.fiat_rate,
        usdt_amount=body.usdt_amount,
        usdt_rate=body.usdt_rate,
        fiat_currency=body.fiat_currency,
        payment_method=body.payment_method,
        settlement=body.settlement.to_mode(),
        holder_id=body.holder_id,
        is_private=body.is_private,
        notes=body.notes,
        created_at=body.created_at,
        forex_rate=body.forex_rate,
        crypto_rate=body.crypto_rate,
        revolut_fee=body.revolut_fee,
        kraken_fee=body.kraken_fee,
    )
    return TransactionOut.from_record(record)


@router.get(
    "/by-display-id/{display_id}",
    response_model=TransactionOut,
    tags=["Transactions"],
)
def get_by_display_id(
    display_id: str,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    return TransactionOut.from_record(manager.get_by_display_id(display_id))


@router.get("/{transaction_id}", response_model=TransactionOut, tags=["Transactions"])
def get_transaction(
    transaction_id: str,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    return TransactionOut.from_record(manager.get_transaction(transaction_id))


@router.patch("/{transaction_id}", response_model=TransactionOut, tags=["Transactions"])
def update_transaction(
    transaction_id: str,
    body: TransactionUpdate,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    record = manager.update_transaction(transaction_id, body.changes())
    return TransactionOut.from_record(record)


@router.delete(
    "/{transaction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Transactions"],
)
def delete_transaction(
    transaction_id: str,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> Response:
    manager.delete_transaction(transaction_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{transaction_id}/steps/{step}",
    response_model=TransactionOut,
    tags=["Transactions"],
)
def update_step(
    transaction_id: str,
    step: str,
    body: Optional[StepUpdate] = None,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    if body is None or body.value is None:
        record = manager.toggle_step(transaction_id, step)
    else:
        record = manager.set_step(transaction_id, step, body.value)
    return TransactionOut.from_record(record)


@router.put(
    "/{transaction_id}/holder",
    response_model=TransactionOut,
    tags=["Transactions"],
)
def assign_holder(
    transaction_id: str,
    body: HolderAssignment,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    record = manager.assign_holder_and_mark_paid(transaction_id, body.holder_id)
    return TransactionOut.from_record(record)


@router.put(
    "/{transaction_id}/status",
    response_model=TransactionOut,
    tags=["Transactions"],
)
def set_status(
    transaction_id: str,
    body: StatusUpdate,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    return TransactionOut.from_record(manager.set_status(transaction_id, body.status))


@router.put(
    "/{transaction_id}/settlement",
    response_model=TransactionOut,
    tags=["Transactions"],
)
def set_settlement(
    transaction_id: str,
    body: SettlementIn,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    record = manager.set_settlement_mode(transaction_id, body.to_mode())
    return TransactionOut.from_record(record)


@router.put(
    "/{transaction_id}/profit-override",
    response_model=TransactionOut,
    tags=["Transactions"],
)
def override_profit(
    transaction_id: str,
    body: OverrideValue,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    return TransactionOut.from_record(manager.override_profit(transaction_id, body.value))


@router.delete(
    "/{transaction_id}/profit-override",
    response_model=TransactionOut,
    tags=["Transactions"],
)
def reset_profit(
    transaction_id: str,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    return TransactionOut.from_record(manager.reset_profit(transaction_id))


@router.put(
    "/{transaction_id}/retained-override",
    response_model=TransactionOut,
    tags=["Transactions"],
)
def override_retained(
    transaction_id: str,
    body: OverrideValue,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    record = manager.override_retained_amount(transaction_id, body.value)
    return TransactionOut.from_record(record)


@router.delete(
    "/{transaction_id}/retained-override",
    response_model=TransactionOut,
    tags=["Transactions"],
)
def reset_retained(
    transaction_id: str,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> TransactionOut:
    return TransactionOut.from_record(manager.reset_retained_amount(transaction_id))


@router.get(
    "/{transaction_id}/audit",
    response_model=List[AuditEntryOut],
    tags=["Transactions"],
)
def list_audit(
    transaction_id: str,
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> List[AuditEntryOut]:
    return [AuditEntryOut.from_entry(e) for e in manager.list_audit(transaction_id)]
