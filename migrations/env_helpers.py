"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without triggering
alembic.context at import time.
"""

from __future__ import annotations

import os
import re
from urllib.parse import quote_plus, urlparse, urlunparse

# key=value or key='quoted value' (backslash escapes inside quotes)
_DSN_TOKEN = re.compile(r"(\w+)\s*=\s*('(?:[^'\\]|\\.)*'|\S*)")
_DSN_ESCAPE = re.compile(r"\\(.)")

DRIVER_SCHEME = "postgresql+psycopg2"


def parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq key=value DSN into a dict, unquoting quoted values."""
    tokens: dict[str, str] = {}
    for key, raw in _DSN_TOKEN.findall(dsn):
        if raw.startswith("'") and raw.endswith("'") and len(raw) >= 2:
            raw = _DSN_ESCAPE.sub(r"\1", raw[1:-1])
        tokens[key] = raw
    return tokens


def libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A host starting with "/" is a unix socket directory and goes in the query
    string; otherwise host:port is used (port defaults to 5432).
    """
    tokens = parse_libpq_dsn(dsn)

    password = tokens.get("password") or os.environ.get("DB_PASSWORD", "")
    user = quote_plus(tokens.get("user", ""))
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")
    port = tokens.get("port", "5432")

    credentials = f"{user}:{quote_plus(password)}" if password else user

    if host.startswith("/"):
        return f"{DRIVER_SCHEME}://{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{DRIVER_SCHEME}://{credentials}@{host}:{port}/{dbname}"


def _normalize_url(url: str) -> str:
    scheme, rest = url.split("://", 1)
    if scheme in ("postgres", "postgresql"):
        url = f"{DRIVER_SCHEME}://{rest}"

    db_password = os.environ.get("DB_PASSWORD", "")
    parsed = urlparse(url)
    if db_password and not parsed.password:
        netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(db_password)}@{parsed.hostname or ''}"
        if parsed.port:
            netloc += f":{parsed.port}"
        url = urlunparse(parsed._replace(netloc=netloc))
    return url


def get_database_url() -> str:
    """SQLAlchemy URL for Alembic, built from DATABASE_URL (URL or libpq DSN).

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" in url:
        return _normalize_url(url)
    return libpq_dsn_to_url(url)
