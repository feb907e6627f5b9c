# ============================================================================
# Arbitrage Ledger
# API Routes Module
# ============================================================================

from app.api.transactions import router as transactions_router
from app.api.holders import router as holders_router
from app.api.reports import router as reports_router
from app.api.calculator import router as calculator_router
from app.api.rates import router as rates_router
from app.api.preview import router as preview_router

__all__ = [
    "transactions_router",
    "holders_router",
    "reports_router",
    "calculator_router",
    "rates_router",
    "preview_router",
]
