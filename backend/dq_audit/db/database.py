"""Database setup — SQLite with WAL mode via SQLModel/SQLAlchemy.

What goes where:
- audit_run, audit_issue, remediation_attempt, manual_queue_item: pipeline state
- company, candidate: the business records audits inspect and remediate

Pipeline components accept an explicit engine; the module-level ``engine``
is the default used by the API and the scheduler.
"""

from __future__ import annotations

import os

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from dq_audit.config import settings


def get_database_url() -> str:
    """Get database URL, ensuring the data directory exists."""
    url = settings.database_url
    if url.startswith("sqlite:///"):
        db_path = url.replace("sqlite:///", "")
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
    return url


# Enable WAL mode for all SQLite connections
@event.listens_for(Engine, "connect")
def set_sqlite_wal(dbapi_connection, connection_record):
    """Enable WAL mode so dashboard reads don't block a running audit."""
    if type(dbapi_connection).__module__.split(".")[0] != "sqlite3":
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str) -> Engine:
    """Create an engine for ``url`` (SQLite gets cross-thread access)."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


engine = make_engine(get_database_url())


def create_db_and_tables(bind: Engine | None = None) -> None:
    """Create all tables defined by SQLModel metadata."""
    # Table classes must be imported so they register on the metadata
    from dq_audit.models import audit, records  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """Dependency for FastAPI endpoints."""
    with Session(engine) as session:
        yield session
