"""PostgreSQL connection handling."""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from ..config import DEFAULT_STATEMENT_TIMEOUT_MS


def get_connection_string() -> str:
    """Get database connection string from environment."""
    return os.getenv(
        "DATABASE_URL",
        "postgresql://localhost:5432/opinion_topics"
    )


def connect(
    database_url: Optional[str] = None,
    statement_timeout_ms: int = DEFAULT_STATEMENT_TIMEOUT_MS,
):
    """Open a connection whose cursors return dict rows.

    Every statement is bounded by `statement_timeout_ms`; a timed-out
    statement raises and aborts the surrounding transaction.
    """
    return psycopg2.connect(
        database_url or get_connection_string(),
        cursor_factory=RealDictCursor,
        options=f"-c statement_timeout={int(statement_timeout_ms)}",
    )


@contextmanager
def get_connection(
    database_url: Optional[str] = None,
    statement_timeout_ms: int = DEFAULT_STATEMENT_TIMEOUT_MS,
) -> Generator:
    """Get a database connection context manager."""
    conn = connect(database_url, statement_timeout_ms)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(database_url: Optional[str] = None) -> None:
    """Initialize database schema."""
    schema_path = Path(__file__).parent / "schema.sql"
    with open(schema_path) as f:
        schema_sql = f.read()

    with get_connection(database_url) as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
