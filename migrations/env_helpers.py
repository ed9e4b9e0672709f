"""Database URL helpers for Alembic migrations.

The service connects with psycopg2 using DATABASE_URL as-is (URL or libpq
key=value DSN); SQLAlchemy only understands URLs, so migrations convert.

Kept apart from env.py so they can be tested without alembic.context.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus

from psycopg2.extensions import parse_dsn

_DRIVER_SCHEME = "postgresql+psycopg2://"


def _libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq key=value DSN to a SQLAlchemy URL.

    Unix socket hosts (host=/path) go into the query string:
        postgresql+psycopg2://USER:PASS@/DB?host=%2Fpath
    """
    params = parse_dsn(dsn)

    user = quote_plus(params.get("user", ""))
    password = quote_plus(params.get("password", ""))
    dbname = quote_plus(params.get("dbname", ""))
    host = params.get("host", "localhost")
    port = params.get("port", "5432")

    credentials = f"{user}:{password}@" if password else f"{user}@"

    if host.startswith("/"):
        return f"{_DRIVER_SCHEME}{credentials}/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_SCHEME}{credentials}{host}:{port}/{dbname}"


def _get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return _libpq_dsn_to_url(url)
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return _DRIVER_SCHEME + url[len(scheme):]
    return url
