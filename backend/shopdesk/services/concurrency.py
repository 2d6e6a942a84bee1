# Overview: Locking and retry helpers shared by services that write contended rows.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Use begin_immediate() to serialize writers on SQLite.
    """
    return query.with_for_update()


def begin_immediate() -> None:
    """
    Take the SQLite write lock at the start of a unit of work.

    No-op on other dialects, which rely on row locks instead.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on: tuple = ()):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and any extra exception types passed in
    retry_on. The session is rolled back before each retry; the last error
    is re-raised once attempts are exhausted.
    """
    retryable = RETRYABLE_ERRORS + tuple(retry_on)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
