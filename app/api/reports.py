# ============================================================================
# Arbitrage Ledger
# Report API Endpoints
# ============================================================================
#
# Endpoints:
#   GET /api/reports/summary      - dashboard totals (completed records by default)
#   GET /api/reports/series       - per-transaction profit, oldest first
#   GET /api/reports/holders      - profit per holder
#   GET /api/reports/investments  - retained capital per holder
#
# Every endpoint accepts the transaction list filters. The dashboard
# endpoints default to status=done; the investment view ignores status and
# reads every retained record.
#
# ============================================================================

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import (
    build_filter,
    get_filter_query,
    get_holder_registry,
    get_lifecycle_manager,
)
from app.schemas.transaction import FilterQuery
from services.holder_registry import HolderRegistry
from services.ledger_reports import (
    profit_series,
    summarize_holders,
    summarize_investment_holdings,
    summarize_transactions,
)
from services.transaction_filters import StatusFilter, TransactionFilter
from services.transaction_lifecycle import TransactionLifecycleManager

router = APIRouter()


@router.get("/summary", tags=["Reports"])
def get_summary(
    query: FilterQuery = Depends(get_filter_query),
    status: StatusFilter = Query(StatusFilter.DONE),
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> Dict[str, Any]:
    records = manager.list_transactions(build_filter(query, status=status))
    return summarize_transactions(records).to_dict()


@router.get("/series", tags=["Reports"])
def get_profit_series(
    query: FilterQuery = Depends(get_filter_query),
    status: StatusFilter = Query(StatusFilter.DONE),
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
) -> List[Dict[str, Any]]:
    records = manager.list_transactions(build_filter(query, status=status), ascending=True)
    return [point.to_dict() for point in profit_series(records)]


@router.get("/holders", tags=["Reports"])
def get_holder_summaries(
    query: FilterQuery = Depends(get_filter_query),
    status: StatusFilter = Query(StatusFilter.DONE),
    include_transactions: bool = Query(False),
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
    registry: HolderRegistry = Depends(get_holder_registry),
) -> List[Dict[str, Any]]:
    records = manager.list_transactions(build_filter(query, status=status))
    summaries = summarize_holders(registry.list_holders(), records)
    return [s.to_dict(include_transactions=include_transactions) for s in summaries]


@router.get("/investments", tags=["Reports"])
def get_investment_holdings(
    search: Optional[str] = Query(None, max_length=200),
    manager: TransactionLifecycleManager = Depends(get_lifecycle_manager),
    registry: HolderRegistry = Depends(get_holder_registry),
) -> Dict[str, Any]:
    records = manager.list_transactions(TransactionFilter(retained_only=True))
    report = summarize_investment_holdings(registry.list_holders(), records, search=search)
    return report.to_dict()
