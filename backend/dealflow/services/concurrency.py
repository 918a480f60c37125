# Overview: Transaction helpers shared by every mutating service operation.

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

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the unit of work as a writer.

    SQLite has no row locks, so the whole database write lock is taken up
    front (BEGIN IMMEDIATE) instead of upgrading a read transaction halfway
    through, which would fail with "database is locked". Other dialects rely
    on lock_for_update() on the rows they touch.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None, retry_on=()):
    """
    Execute one unit of work, rolling back on any failure.

    Retries only on transient infrastructure failures: OperationalError
    (deadlocks, lock timeouts), StaleDataError (optimistic locking conflicts)
    and any extra exception types in retry_on. Business errors roll back and
    propagate immediately.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("RETRY_BACKOFF_BASE", 0.1)

    transient = (OperationalError, StaleDataError) + tuple(retry_on)
    for attempt in range(attempts):
        try:
            return func()
        except transient:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning("Transient database failure, retrying (attempt %d)", attempt + 1)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
