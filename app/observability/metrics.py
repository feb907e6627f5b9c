"""
============================================================================
Arbitrage Ledger - Prometheus Metrics
============================================================================

Input Constraints: Currency values are Decimal
Side Effects: Updates Prometheus metrics registry

METRICS EXPOSED
---------------
- ledger_transactions_created_total: Transactions created, by payment method
  and settlement mode
- ledger_status_transitions_total: Status changes, by source (step flow or
  manual)
- ledger_validation_rejections_total: Mutations rejected, by error code
- ledger_audit_failures_total: Audit appends that failed (non-fatal)
- ledger_rate_fetch_failures_total: Rate source failures, by source
- ledger_rate_fetch_seconds: Outbound rate request latency
- ledger_last_rate_gauge: Last successful composite rate, by base currency

ZERO-FLOAT MANDATE
------------------
Decimal values are converted to float ONLY at the Prometheus boundary.

============================================================================
"""

import logging
from decimal import Decimal
from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, REGISTRY, generate_latest

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

TRANSACTIONS_CREATED = Counter(
    "ledger_transactions_created_total",
    "Total number of arbitrage transactions created",
    ["payment_method", "settlement_mode"]
)

STATUS_TRANSITIONS = Counter(
    "ledger_status_transitions_total",
    "Total number of transaction status changes",
    ["from_status", "to_status", "source"]
)

VALIDATION_REJECTIONS = Counter(
    "ledger_validation_rejections_total",
    "Total number of ledger mutations rejected by validation",
    ["error_code"]
)

AUDIT_FAILURES = Counter(
    "ledger_audit_failures_total",
    "Total number of audit log appends that failed",
    ["action"]
)

RATE_FETCH_FAILURES = Counter(
    "ledger_rate_fetch_failures_total",
    "Total number of failed outbound rate requests",
    ["source", "error_code"]
)

RATE_FETCH_SECONDS = Histogram(
    "ledger_rate_fetch_seconds",
    "Outbound rate request latency in seconds",
    ["source"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

LAST_RATE_GAUGE = Gauge(
    "ledger_last_rate_gauge",
    "Last successfully fetched composite fiat -> USDT rate",
    ["base"]
)


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

def record_transaction_created(
    payment_method: str,
    settlement_mode: str,
    correlation_id: Optional[str] = None
) -> None:
    """Side Effects: Increments Prometheus counter"""
    try:
        TRANSACTIONS_CREATED.labels(
            payment_method=payment_method, settlement_mode=settlement_mode
        ).inc()
        logger.debug(
            "Metric: transaction_created | payment_method=%s | settlement_mode=%s | "
            "correlation_id=%s",
            payment_method, settlement_mode, correlation_id
        )
    except Exception as e:
        logger.error(
            "[OBS-001] Failed to record transaction_created metric | error=%s",
            str(e)
        )


def record_status_transition(
    from_status: str,
    to_status: str,
    source: str
) -> None:
    """
    Record a status change.

    Args:
        from_status: Previous status value
        to_status: New status value
        source: "steps" for the automatic flow, "manual" for set_status
    """
    try:
        STATUS_TRANSITIONS.labels(
            from_status=from_status, to_status=to_status, source=source
        ).inc()
    except Exception as e:
        logger.error(
            "[OBS-002] Failed to record status_transition metric | error=%s",
            str(e)
        )


def record_validation_rejection(error_code: str) -> None:
    try:
        VALIDATION_REJECTIONS.labels(error_code=error_code).inc()
    except Exception as e:
        logger.error(
            "[OBS-003] Failed to record validation_rejection metric | error=%s",
            str(e)
        )


def record_audit_failure(action: str) -> None:
    try:
        AUDIT_FAILURES.labels(action=action).inc()
    except Exception as e:
        logger.error(
            "[OBS-004] Failed to record audit_failure metric | error=%s",
            str(e)
        )


def record_rate_fetch_failure(source: str, error_code: str) -> None:
    try:
        RATE_FETCH_FAILURES.labels(source=source, error_code=error_code).inc()
    except Exception as e:
        logger.error(
            "[OBS-005] Failed to record rate_fetch_failure metric | error=%s",
            str(e)
        )


def observe_rate_fetch(source: str, seconds: float) -> None:
    try:
        RATE_FETCH_SECONDS.labels(source=source).observe(seconds)
    except Exception as e:
        logger.error(
            "[OBS-006] Failed to observe rate_fetch latency | error=%s",
            str(e)
        )


def update_last_rate(base: str, rate: Decimal) -> None:
    """
    Update the last-known composite rate gauge.

    ZERO-FLOAT MANDATE: Decimal converted to float at Prometheus boundary.
    """
    try:
        if not isinstance(rate, Decimal):
            logger.error(
                "[OBS-000] rate must be Decimal, got %s",
                type(rate).__name__
            )
            return
        LAST_RATE_GAUGE.labels(base=base).set(float(rate))
    except Exception as e:
        logger.error(
            "[OBS-007] Failed to update last_rate gauge | error=%s",
            str(e)
        )


def render_metrics() -> bytes:
    """Serialize the default registry in the Prometheus text format."""
    return generate_latest(REGISTRY)


METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST


# ============================================================================
# Reliability Audit
# ============================================================================
#
# Decimal Integrity: Verified (float conversion only at Prometheus boundary)
# Error Codes: OBS-000 through OBS-007
#
# ============================================================================
