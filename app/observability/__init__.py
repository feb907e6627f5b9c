"""
============================================================================
Arbitrage Ledger - Observability Module
============================================================================

Side Effects: Exposes Prometheus metrics

============================================================================
"""

from app.observability.metrics import (
    TRANSACTIONS_CREATED,
    STATUS_TRANSITIONS,
    VALIDATION_REJECTIONS,
    AUDIT_FAILURES,
    RATE_FETCH_FAILURES,
    RATE_FETCH_SECONDS,
    LAST_RATE_GAUGE,
    METRICS_CONTENT_TYPE,
    record_transaction_created,
    record_status_transition,
    record_validation_rejection,
    record_audit_failure,
    record_rate_fetch_failure,
    observe_rate_fetch,
    update_last_rate,
    render_metrics,
)

__all__ = [
    "TRANSACTIONS_CREATED",
    "STATUS_TRANSITIONS",
    "VALIDATION_REJECTIONS",
    "AUDIT_FAILURES",
    "RATE_FETCH_FAILURES",
    "RATE_FETCH_SECONDS",
    "LAST_RATE_GAUGE",
    "METRICS_CONTENT_TYPE",
    "record_transaction_created",
    "record_status_transition",
    "record_validation_rejection",
    "record_audit_failure",
    "record_rate_fetch_failure",
    "observe_rate_fetch",
    "update_last_rate",
    "render_metrics",
]
