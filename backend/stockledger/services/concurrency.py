# Overview: Serialization and retry helpers for ledger-writing transactions.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

# One ledger-writing transaction at a time per process. Server databases also
# get row locks on the touched products (lock_products); SQLite serializes
# writers on its own database lock.
_ledger_write_lock = threading.RLock()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def lock_products(product_ids) -> None:
    """Row-lock products in ascending id order so concurrent batches cannot deadlock."""
    from ..models import Product

    ids = sorted(set(product_ids))
    if not ids:
        return
    lock_for_update(db.session.query(Product.id).filter(Product.id.in_(ids)).order_by(Product.id)).all()


@contextmanager
def ledger_write_lock():
    """Held for the whole batch: compute, check, append, commit."""
    with _ledger_write_lock:
        yield


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Defaults come from LEDGER_WRITE_RETRIES
    and LEDGER_RETRY_BACKOFF.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_WRITE_RETRIES", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.1)
    attempts = max(1, attempts)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Ledger write conflict (attempt %s/%s): %s", attempt + 1, attempts, exc.__class__.__name__
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
