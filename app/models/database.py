import time
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import settings


def _normalize_database_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+psycopg://", 1)

    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+psycopg://", 1)

    return database_url


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        # Waiting for a pooled connection counts against the transaction's max wait.
        "pool_timeout": max(1, settings.ORDER_TX_MAX_WAIT_MS // 1000),
    }


def build_engine(database_url: str):
    normalized = _normalize_database_url(database_url)
    return create_engine(normalized, **_engine_options(normalized))


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class TransactionTimeout(Exception):
    """Raised when a bounded transaction runs past its wall-clock budget."""


def _is_postgres(db: Session) -> bool:
    return db.get_bind().dialect.name == "postgresql"


@contextmanager
def bounded_transaction(db: Session, *, max_wait_ms: int, timeout_ms: int):
    """Run the block as one transaction that commits or fully rolls back.

    On PostgreSQL the lock wait and per-statement runtime are capped with
    ``SET LOCAL``; on every backend the elapsed time is checked before commit so
    a slow transaction is rolled back instead of committed late.
    """
    started = time.monotonic()
    try:
        if _is_postgres(db):
            db.execute(text(f"SET LOCAL lock_timeout = {int(max_wait_ms)}"))
            db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        yield db
        db.flush()
        elapsed_ms = (time.monotonic() - started) * 1000
        if elapsed_ms > timeout_ms:
            raise TransactionTimeout(
                f"Transaction exceeded {timeout_ms}ms (took {elapsed_ms:.0f}ms)"
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
