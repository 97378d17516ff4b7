"""Database layer for the job orchestrator.

Supports two backends:
- PostgreSQL (production, set JOBS_DATABASE_URL env var)
- SQLite (local development and tests, default)

Uses raw SQL via psycopg2 (Postgres) or sqlite3 (SQLite) for simplicity.
No ORM: every job is a single row, and state transitions are written with
compare-and-swap on the row's version column.

Thread-safety: Postgres uses a ThreadedConnectionPool for efficient
connection reuse. SQLite uses per-call connections with check_same_thread=False,
so store calls can be pushed to worker threads with asyncio.to_thread().
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Database URL: postgres://... for Postgres, or empty for SQLite
DATABASE_URL = os.environ.get("JOBS_DATABASE_URL", "")

# SQLite default path
SQLITE_PATH = Path(os.environ.get("JOBS_SQLITE_PATH", "") or Path(__file__).parent / "jobs.db")

_initialized = False
_pg_pool = None


def _is_postgres() -> bool:
    """Check if we're using Postgres."""
    return DATABASE_URL.startswith("postgres")


def _get_pg_pool():
    """Get or create the Postgres connection pool (lazy singleton)."""
    global _pg_pool
    if _pg_pool is None:
        import psycopg2.pool
        _pg_pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=10,
            dsn=DATABASE_URL,
        )
        logger.info("PostgreSQL connection pool initialized (1-10 connections)")
    return _pg_pool


def driver_errors() -> tuple:
    """Exception classes raised by the active database driver."""
    if _is_postgres():
        import psycopg2
        return (psycopg2.Error,)
    return (sqlite3.Error,)


@contextmanager
def get_connection():
    """Get a database connection (Postgres or SQLite).

    Usage:
        with get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(...)
            conn.commit()
    """
    if _is_postgres():
        pool = _get_pg_pool()
        conn = pool.getconn()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)
    else:
        conn = sqlite3.connect(str(SQLITE_PATH), check_same_thread=False, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()


def json_dumps(data: Any) -> str:
    """Serialize data to JSON string for storage."""
    if data is None:
        return "{}"
    return json.dumps(data, ensure_ascii=False, default=str)


def json_loads(text: Any) -> Any:
    """Deserialize JSON string from storage."""
    if not text:
        return {}
    if isinstance(text, (dict, list)):
        return text  # Already parsed (Postgres JSONB)
    return json.loads(text)


def execute(sql: str, params: tuple = (), fetch: str = "none") -> Any:
    """Execute a SQL statement.

    Args:
        sql: SQL statement (use %s placeholders; adapted to ? for SQLite)
        params: Parameters tuple
        fetch: "none", "one", "all", or "rowcount"

    Returns:
        None for "none", dict for "one", list[dict] for "all",
        int (rows affected) for "rowcount"
    """
    if _is_postgres():
        adapted_sql = sql
    else:
        adapted_sql = sql.replace("%s", "?")

    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(adapted_sql, params)

        if fetch == "one":
            row = cursor.fetchone()
            if row is None:
                return None
            if _is_postgres():
                columns = [desc[0] for desc in cursor.description]
                return dict(zip(columns, row))
            return dict(row)
        elif fetch == "all":
            rows = cursor.fetchall()
            if _is_postgres():
                columns = [desc[0] for desc in cursor.description]
                return [dict(zip(columns, row)) for row in rows]
            return [dict(row) for row in rows]

        conn.commit()
        if fetch == "rowcount":
            return cursor.rowcount
        return None


def init_db(force: bool = False):
    """Create tables if they don't exist."""
    global _initialized
    if _initialized and not force:
        return

    if _is_postgres():
        _init_postgres()
    else:
        SQLITE_PATH.parent.mkdir(parents=True, exist_ok=True)
        _init_sqlite()

    _initialized = True
    backend = "PostgreSQL" if _is_postgres() else f"SQLite ({SQLITE_PATH})"
    logger.info(f"Jobs database initialized: {backend}")


def _init_postgres():
    """Create Postgres tables."""
    ddl = """
    CREATE TABLE IF NOT EXISTS agent_jobs (
        job_id VARCHAR(100) PRIMARY KEY,
        status VARCHAR(20) NOT NULL DEFAULT 'pending',
        steps JSONB NOT NULL DEFAULT '[]',
        current_step_index INTEGER NOT NULL DEFAULT 0,
        results JSONB NOT NULL DEFAULT '{}',
        error_message TEXT,
        last_step_error TEXT,
        lease_owner VARCHAR(100),
        lease_expires_at TIMESTAMP,
        next_attempt_at TIMESTAMP,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT NOW(),
        started_at TIMESTAMP,
        completed_at TIMESTAMP,
        updated_at TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_agent_jobs_status ON agent_jobs(status);

    CREATE TABLE IF NOT EXISTS quizzes (
        id VARCHAR(100) PRIMARY KEY,
        name VARCHAR(500) NOT NULL,
        created_by_user_id VARCHAR(100) NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'draft',
        url TEXT NOT NULL,
        data JSONB NOT NULL DEFAULT '{}',
        created_at TIMESTAMP DEFAULT NOW(),
        modified_at TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS summary_documents (
        id VARCHAR(100) PRIMARY KEY,
        quiz_id VARCHAR(100) NOT NULL,
        url TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT NOW(),
        modified_at TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_summary_documents_quiz ON summary_documents(quiz_id);
    """
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(ddl)
        conn.commit()


def _init_sqlite():
    """Create SQLite tables."""
    ddl = """
    CREATE TABLE IF NOT EXISTS agent_jobs (
        job_id TEXT PRIMARY KEY,
        status TEXT NOT NULL DEFAULT 'pending',
        steps TEXT NOT NULL DEFAULT '[]',
        current_step_index INTEGER NOT NULL DEFAULT 0,
        results TEXT NOT NULL DEFAULT '{}',
        error_message TEXT,
        last_step_error TEXT,
        lease_owner TEXT,
        lease_expires_at TEXT,
        next_attempt_at TEXT,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TEXT,
        started_at TEXT,
        completed_at TEXT,
        updated_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_agent_jobs_status ON agent_jobs(status);

    CREATE TABLE IF NOT EXISTS quizzes (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        created_by_user_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'draft',
        url TEXT NOT NULL,
        data TEXT NOT NULL DEFAULT '{}',
        created_at TEXT,
        modified_at TEXT
    );

    CREATE TABLE IF NOT EXISTS summary_documents (
        id TEXT PRIMARY KEY,
        quiz_id TEXT NOT NULL,
        url TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT,
        modified_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_summary_documents_quiz ON summary_documents(quiz_id);
    """
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.executescript(ddl)
        conn.commit()
