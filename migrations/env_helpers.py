"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without alembic.context.
DATABASE_URL may be a URL (postgres://, postgresql://) or a libpq key=value
DSN; both become a postgresql+psycopg2 SQLAlchemy URL. DB_PASSWORD fills in
a missing password.
"""

from __future__ import annotations

import os
import re
from urllib.parse import quote_plus, urlparse, urlunparse

DRIVER_SCHEME = "postgresql+psycopg2://"

# key=value or key='quoted value with \' escapes'
_LIBPQ_PAIR = re.compile(r"(\w+)=('(?:\\.|[^'\\])*'|\S*)")


def parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq key=value DSN into a dict."""
    pairs: dict[str, str] = {}
    for key, value in _LIBPQ_PAIR.findall(dsn):
        if value.startswith("'"):
            value = re.sub(r"\\(.)", r"\1", value[1:-1])
        pairs[key] = value
    return pairs


def _password_fallback() -> str:
    return os.environ.get("DB_PASSWORD", "")


def libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A socket host (host=/cloudsql/...) moves to the `host` query param.
    """
    parts = parse_libpq_dsn(dsn)
    password = parts.get("password") or _password_fallback()

    credentials = f"{quote_plus(parts.get('user', ''))}:{quote_plus(password)}"
    dbname = quote_plus(parts.get("dbname", ""))
    host = parts.get("host", "localhost")

    if host.startswith("/"):
        return f"{DRIVER_SCHEME}{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{DRIVER_SCHEME}{credentials}@{host}:{parts.get('port', '5432')}/{dbname}"


def _normalize_url(url: str) -> str:
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            url = DRIVER_SCHEME + url[len(scheme):]
            break

    password = _password_fallback()
    parsed = urlparse(url)
    if password and not parsed.password:
        netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname}"
        if parsed.port:
            netloc += f":{parsed.port}"
        url = urlunparse(parsed._replace(netloc=netloc))
    return url


def get_database_url() -> str:
    """SQLAlchemy URL from DATABASE_URL (+ DB_PASSWORD)."""
    raw = os.environ.get("DATABASE_URL")
    if not raw:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" in raw:
        return _normalize_url(raw)
    return libpq_dsn_to_url(raw)
