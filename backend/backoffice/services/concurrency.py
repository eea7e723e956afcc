# Overview: Service-layer operations for concurrency; locking and retry helpers shared by write paths.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite, write paths call begin_write() instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Start the enclosing write transaction.

    SQLite has no row locks, so the whole database is reserved up front with
    BEGIN IMMEDIATE; concurrent writers then queue on the file lock instead of
    interleaving read-then-write sequences. Other backends rely on
    lock_for_update and need nothing here.
    """
    if db.engine.dialect.name != "sqlite":
        return
    if db.session().in_transaction():
        # Caller already holds a transaction (e.g. nested service call).
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Business errors propagate untouched
    after the session is rolled back.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
