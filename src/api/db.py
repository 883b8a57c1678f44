from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

import psycopg


class StoreError(Exception):
    pass


class StoreConfigurationError(StoreError):
    pass


class StoreDataError(StoreError):
    pass


class StoreUnavailableError(StoreError):
    pass


def _database_url() -> str:
    value = os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL")
    if not value:
        raise StoreConfigurationError("DATABASE_URL or SUPABASE_DB_URL is required")
    return value


def _connect_timeout_seconds() -> int:
    return int(os.getenv("PERF_DB_CONNECT_TIMEOUT_SECONDS", "10"))


@contextmanager
def get_conn() -> Iterator[psycopg.Connection]:
    try:
        conn = psycopg.connect(
            _database_url(),
            autocommit=False,
            connect_timeout=_connect_timeout_seconds(),
            application_name="performance-monitor",
        )
    except psycopg.Error as exc:
        raise StoreUnavailableError(f"database connection failed: {exc}") from exc
    try:
        yield conn
        conn.commit()
    except psycopg.Error as exc:
        conn.rollback()
        raise StoreUnavailableError(f"database operation failed: {exc}") from exc
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
