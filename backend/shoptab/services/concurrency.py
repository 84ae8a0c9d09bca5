# Overview: Transaction, locking and retry helpers shared by the write services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_lock() covers it
    by taking the database write lock up front.
    """
    return query.with_for_update()


def begin_write_lock() -> None:
    """
    On SQLite, start the transaction with BEGIN IMMEDIATE so two writers can
    never both read a stale balance. No-op on other databases and when a
    transaction is already open on the connection.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def _default_attempts() -> int:
    return int(current_app.config.get("RETRY_ATTEMPTS", 3))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    attempts = attempts or _default_attempts()
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.info("Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(func, *, write_lock: bool = False, attempts: int | None = None):
    """
    Run func() as one logical operation: commit on success, roll back on any
    error so nothing is partially applied, retry lock/stale conflicts.
    """
    def _op():
        try:
            if write_lock:
                begin_write_lock()
            result = func()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return result

    return run_with_retry(_op, attempts=attempts)
