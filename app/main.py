"""
============================================================================
Arbitrage Ledger
FastAPI Application Entry Point
============================================================================

Input Constraints: JSON requests; financial values as decimal strings
Side Effects: Database writes (transactions, holders, audit log)

Ledger errors raised anywhere below a router are mapped here:

    LedgerValidationError     -> 422
    LedgerNotFoundError       -> 404
    LedgerStoreError          -> 503
    LedgerConfigurationError  -> 500

Every error body has the shape {"detail": {"error_code", "message"}}.

USAGE:
    uvicorn app.main:app --reload

============================================================================
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import (
    calculator_router,
    holders_router,
    preview_router,
    rates_router,
    reports_router,
    transactions_router,
)
from app.database.session import check_database_connection, init_database
from app.observability.metrics import METRICS_CONTENT_TYPE, render_metrics
from services.ledger_config import LedgerConfigurationError
from services.ledger_errors import (
    LedgerError,
    LedgerNotFoundError,
    LedgerStoreError,
    LedgerValidationError,
)

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("LEDGER-API")

VERSION = "1.0.0"


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

def _error_response(status_code: int, error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"error_code": error_code, "message": message}},
    )


async def validation_error_handler(request: Request, exc: LedgerValidationError):
    return _error_response(422, exc.error_code, exc.message)


async def not_found_error_handler(request: Request, exc: LedgerNotFoundError):
    return _error_response(404, exc.error_code, exc.message)


async def store_error_handler(request: Request, exc: LedgerStoreError):
    logger.error(
        f"[{exc.error_code}] Store failure | path={request.url.path} | error={exc.message}"
    )
    return _error_response(503, exc.error_code, exc.message)


async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.error(f"[{exc.error_code}] Unhandled ledger error | path={request.url.path}")
    return _error_response(500, exc.error_code, exc.message)


async def configuration_error_handler(request: Request, exc: LedgerConfigurationError):
    logger.error(f"[{exc.error_code}] Configuration error | error={exc.message}")
    return _error_response(500, exc.error_code, exc.message)


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

def create_app(init_db: bool = True) -> FastAPI:
    """
    Build the ledger API.

    Args:
        init_db: Create the ledger tables on startup. Tests pass False and
                 override get_store with an in-memory store.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if init_db:
            init_database()
            logger.info("[LEDGER-API] Database schema ready")
        logger.info(f"[LEDGER-API] Arbitrage Ledger v{VERSION} started")
        yield
        logger.info("[LEDGER-API] Arbitrage Ledger stopped")

    app = FastAPI(
        title="Arbitrage Ledger",
        description=(
            "Fiat -> USDT -> LYD arbitrage ledger: transaction lifecycle, "
            "holders, retained capital and profit reporting."
        ),
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    # Subclass handlers are resolved before the LedgerError fallback.
    app.add_exception_handler(LedgerValidationError, validation_error_handler)
    app.add_exception_handler(LedgerNotFoundError, not_found_error_handler)
    app.add_exception_handler(LedgerStoreError, store_error_handler)
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(LedgerConfigurationError, configuration_error_handler)

    app.include_router(transactions_router, prefix="/api/transactions")
    app.include_router(holders_router, prefix="/api/holders")
    app.include_router(reports_router, prefix="/api/reports")
    app.include_router(calculator_router, prefix="/api/calculator")
    app.include_router(rates_router, prefix="/api/rates")
    app.include_router(preview_router)

    @app.get("/health", tags=["Observability"])
    async def health_check():
        try:
            check_database_connection()
            return {
                "status": "healthy",
                "database": "connected",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        except Exception as e:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "database": "disconnected", "error": str(e)},
            )

    @app.get("/metrics", tags=["Observability"])
    async def metrics():
        return Response(content=render_metrics(), media_type=METRICS_CONTENT_TYPE)

    return app


app = create_app()
