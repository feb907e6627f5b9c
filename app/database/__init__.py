# ============================================================================
# Arbitrage Ledger
# Database Module - SQLAlchemy Session Management
# ============================================================================

from app.database.session import get_db, get_engine, get_store, init_database

__all__ = ["get_db", "get_engine", "get_store", "init_database"]
