"""
============================================================================
Arbitrage Ledger - Database Session
============================================================================

SQLAlchemy engine and session management.

Input Constraints: LEDGER_DATABASE_URL (PostgreSQL in production, SQLite
                   for local use and tests)
Side Effects: Database connections

The engine is created on first use, not at import, so importing the app
never opens a connection.

============================================================================
"""

from typing import Generator, Optional

from fastapi import Depends
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from services.ledger_config import get_ledger_config
from services.sql_transaction_store import SqlTransactionStore, create_schema
from services.transaction_store import TransactionStore


# ============================================================================
# SQLALCHEMY ENGINE
# ============================================================================

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for database_url.

    PostgreSQL connections are pooled and pinned to UTC; SQLite connections
    may be shared across the threads FastAPI runs sync endpoints on.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )

    engine = create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
    )

    @event.listens_for(engine, "connect")
    def set_timezone(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("SET timezone TO 'UTC'")
        cursor.close()

    return engine


def get_engine() -> Engine:
    global _engine

    if _engine is None:
        _engine = build_engine(get_ledger_config().database_url)
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory

    if _session_factory is None:
        _session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine(),
        )
    return _session_factory


def init_database() -> None:
    """Create the ledger tables if they do not exist."""
    create_schema(get_engine())


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================

def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database session injection.

    The session is rolled back on exception and always closed.
    """
    db = get_session_factory()()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_store(db: Session = Depends(get_db)) -> TransactionStore:
    """FastAPI dependency returning the SQL-backed record store."""
    return SqlTransactionStore(db)


# ============================================================================
# HEALTH CHECK
# ============================================================================

def check_database_connection() -> bool:
    """
    Raises:
        Exception: If the database cannot be reached
    """
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        raise Exception(f"Database connection failed: {e}")
