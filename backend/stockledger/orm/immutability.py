"""
ORM-level immutability for the stock ledger.

Ledger entries are append-only. Corrections are new entries (ADJUSTMENT),
never edits. The one sanctioned removal is inventory_service.reverse(),
which deletes all entries of a single source document; it marks the
session with REVERSAL_FLAG for the duration of that batch.

    session.flush()
         |
         v
    [before_flush] --> dirty StockLedgerEntry  -> LedgerImmutabilityError
                   --> deleted StockLedgerEntry without REVERSAL_FLAG
                                               -> LedgerImmutabilityError

Bulk query-level UPDATE statements bypass these listeners; nothing in this
package issues one against stock_ledger.
"""
from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..exceptions import LedgerImmutabilityError

REVERSAL_FLAG = "stockledger.reversal_in_progress"


def _check_ledger_mutations(session, flush_context, instances):
    from ..models import StockLedgerEntry

    for obj in session.dirty:
        if isinstance(obj, StockLedgerEntry) and session.is_modified(obj, include_collections=False):
            raise LedgerImmutabilityError(
                f"Ledger entry {obj.id} is immutable; append an ADJUSTMENT instead",
                {"entry_id": obj.id, "operation": "UPDATE"},
            )

    if session.info.get(REVERSAL_FLAG):
        return

    for obj in session.deleted:
        if isinstance(obj, StockLedgerEntry):
            raise LedgerImmutabilityError(
                f"Ledger entry {obj.id} can only be removed by reversing its source document",
                {"entry_id": obj.id, "operation": "DELETE"},
            )


@contextmanager
def reversal_scope(session):
    """Allow ledger deletes on `session` for the duration of one reversal."""
    session.info[REVERSAL_FLAG] = True
    try:
        yield session
    finally:
        session.info.pop(REVERSAL_FLAG, None)


def register_immutability_listeners() -> None:
    """Idempotent; called from create_app()."""
    if not event.contains(Session, "before_flush", _check_ledger_mutations):
        event.listen(Session, "before_flush", _check_ledger_mutations)


def unregister_immutability_listeners() -> None:
    if event.contains(Session, "before_flush", _check_ledger_mutations):
        event.remove(Session, "before_flush", _check_ledger_mutations)
