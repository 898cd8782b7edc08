"""Database access layer using psycopg2.

Provides:
- get_conn(): Get a database connection from DATABASE_URL
- txn(): Context manager for short, safe transactions
"""

import os
from contextlib import contextmanager
from typing import Iterator
from urllib.parse import urlparse

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor


def _dsn_has_password(dsn: str) -> bool:
    """Check whether a URL or libpq key=value DSN carries a password."""
    if "://" in dsn:
        return bool(urlparse(dsn).password)
    return any(part.startswith("password=") for part in dsn.split())


def get_conn() -> PgConnection:
    """Get a new database connection from DATABASE_URL.

    When the DSN has no password and DB_PASSWORD is set, the password is
    passed separately so secrets can be mounted apart from the DSN.

    Returns:
        psycopg2 connection object.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    db_password = os.environ.get("DB_PASSWORD")
    if db_password and not _dsn_has_password(dsn):
        return psycopg2.connect(dsn, password=db_password)
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, creates a new connection that is closed on exit.
    Commits on successful exit, rolls back on exception.

    Args:
        conn: Optional existing connection. If None, creates new one.

    Yields:
        Cursor for executing queries within the transaction.

    Example:
        with txn() as cur:
            cur.execute("UPDATE whatsapp_instances SET status = %s WHERE id = %s", ...)
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()
