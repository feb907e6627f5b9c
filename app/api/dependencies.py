# ============================================================================
# Arbitrage Ledger
# API Dependencies - per-request service construction
# ============================================================================
#
# Every router resolves its services through these functions so tests can
# swap the record store with app.dependency_overrides[get_store].
#
# The acting user is taken from the X-Actor-Id header and falls back to
# LEDGER_DEFAULT_ACTOR.
#
# ============================================================================

import uuid
from datetime import datetime
from typing import Optional

from fastapi import Depends, Header, Query

from app.database.session import get_store
from app.schemas.transaction import FilterQuery
from services.holder_registry import HolderRegistry
from services.ledger_config import get_ledger_config
from services.rate_service import RateService
from services.transaction_filters import (
    DatePreset,
    PaymentMethodFilter,
    StatusFilter,
    TransactionFilter,
    VisibilityFilter,
)
from services.transaction_lifecycle import TransactionLifecycleManager
from services.transaction_store import TransactionStore


def get_actor_id(x_actor_id: Optional[str] = Header(None)) -> str:
    if x_actor_id and x_actor_id.strip():
        return x_actor_id.strip()
    return get_ledger_config().default_actor


def get_correlation_id(x_correlation_id: Optional[str] = Header(None)) -> str:
    return x_correlation_id or str(uuid.uuid4())


def get_lifecycle_manager(
    store: TransactionStore = Depends(get_store),
    actor_id: str = Depends(get_actor_id),
    correlation_id: str = Depends(get_correlation_id),
) -> TransactionLifecycleManager:
    return TransactionLifecycleManager(store, actor_id=actor_id, correlation_id=correlation_id)


def get_holder_registry(
    store: TransactionStore = Depends(get_store),
    actor_id: str = Depends(get_actor_id),
) -> HolderRegistry:
    return HolderRegistry(store, actor_id=actor_id)


_rate_service: Optional[RateService] = None


def get_rate_service() -> RateService:
    """Process-wide rate service; its last-known slots outlive a request."""
    global _rate_service

    if _rate_service is None:
        _rate_service = RateService()
    return _rate_service


def get_filter_query(
    visibility: VisibilityFilter = Query(VisibilityFilter.ALL),
    payment_method: PaymentMethodFilter = Query(PaymentMethodFilter.ALL),
    status: StatusFilter = Query(StatusFilter.ALL),
    date_preset: DatePreset = Query(DatePreset.ALL),
    custom_start: Optional[datetime] = Query(None),
    custom_end: Optional[datetime] = Query(None),
    holder_id: Optional[str] = Query(None),
    retained_only: bool = Query(False),
) -> FilterQuery:
    return FilterQuery(
        visibility=visibility,
        payment_method=payment_method,
        status=status,
        date_preset=date_preset,
        custom_start=custom_start,
        custom_end=custom_end,
        holder_id=holder_id,
        retained_only=retained_only,
    )


def build_filter(query: FilterQuery, status: Optional[StatusFilter] = None) -> TransactionFilter:
    return TransactionFilter.for_preset(
        query.date_preset,
        custom_start=query.custom_start,
        custom_end=query.custom_end,
        visibility=query.visibility,
        payment_method=query.payment_method,
        status=status or query.status,
        holder_id=query.holder_id,
        retained_only=query.retained_only,
    )
