# Overview: Service-layer operations for the stock ledger; append-only log and balances derived from it.

from __future__ import annotations

import math
from datetime import date
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..orm.immutability import reversal_scope
from ..exceptions import BatchWriteFailed, InvalidLedgerEntry, ProductNotFound
from ..extensions import db
from ..models import Product, StockLedgerEntry
from ..models.ledger import SOURCE_TYPES, TRANSACTION_TYPES
from ..time_utils import to_iso_date
from . import unit_service
"""
Stock Ledger Invariants (authoritative)

- Append-only log; the sole source of truth for stock position.
- quantity_in / quantity_out are non-negative, in the product's primary
  unit, and exactly one of them is positive per entry.
- Balance = SUM(quantity_in) - SUM(quantity_out) over the product's entries,
  optionally as-of a business date (inclusive: date <= as_of). Never cached.
- A batch is appended in one transaction: all of it or none of it.
- Only inventory_service writes here. Rows leave the table only through
  delete_source_entries(), called by inventory_service.reverse().
"""


def _validate_entry(entry: StockLedgerEntry) -> None:
    if entry.transaction_type not in TRANSACTION_TYPES:
        raise InvalidLedgerEntry(
            f"Unknown transaction_type {entry.transaction_type!r}",
            {"transaction_type": entry.transaction_type},
        )
    if entry.source_type not in SOURCE_TYPES:
        raise InvalidLedgerEntry(
            f"Unknown source_type {entry.source_type!r}",
            {"source_type": entry.source_type},
        )
    if entry.product_id is None or entry.company_id is None:
        raise InvalidLedgerEntry("Ledger entry needs product_id and company_id")
    if not isinstance(entry.date, date):
        raise InvalidLedgerEntry("Ledger entry needs a business date", {"date": entry.date})

    qty_in = entry.quantity_in or 0.0
    qty_out = entry.quantity_out or 0.0
    for value in (qty_in, qty_out):
        if not math.isfinite(value) or value < 0:
            raise InvalidLedgerEntry(
                "Ledger quantities must be finite and non-negative",
                {"quantity_in": qty_in, "quantity_out": qty_out},
            )
    if (qty_in > 0) == (qty_out > 0):
        raise InvalidLedgerEntry(
            "Exactly one of quantity_in / quantity_out must be positive",
            {"quantity_in": qty_in, "quantity_out": qty_out},
        )
    entry.quantity_in = float(qty_in)
    entry.quantity_out = float(qty_out)


def append_entries(entries: list[StockLedgerEntry], *, commit: bool = True) -> list[StockLedgerEntry]:
    """
    Append a batch of entries atomically.

    commit=False flushes only, so the caller can commit the batch together
    with its source document. Either way a storage failure rolls the whole
    transaction back.

    Raises:
        InvalidLedgerEntry: before anything is written
        OperationalError / StaleDataError: left to the caller's retry loop
        BatchWriteFailed: any other storage failure
    """
    entries = list(entries)
    if not entries:
        return []
    for entry in entries:
        _validate_entry(entry)

    try:
        db.session.add_all(entries)
        db.session.flush()
        if commit:
            db.session.commit()
    except (OperationalError, StaleDataError):
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Ledger batch write failed (%s entries)", len(entries))
        raise BatchWriteFailed(
            "Ledger batch could not be written; nothing was recorded",
            {"entries": len(entries), "cause": exc.__class__.__name__},
        ) from exc

    return entries


def _balance_query(product_id: int, as_of: date | None):
    q = db.session.query(
        func.coalesce(func.sum(StockLedgerEntry.quantity_in), 0.0).label("qty_in"),
        func.coalesce(func.sum(StockLedgerEntry.quantity_out), 0.0).label("qty_out"),
    ).filter(StockLedgerEntry.product_id == product_id)
    if as_of is not None:
        q = q.filter(StockLedgerEntry.date <= as_of)
    return q


def get_balance(product_id: int, as_of: date | None = None) -> dict:
    """
    Derive the product's stock position from the log.

    Returns {"product_id", "as_of", "quantity_in", "quantity_out", "net"},
    all in the product's primary unit.
    """
    row = _balance_query(product_id, as_of).one()
    qty_in = float(row.qty_in or 0.0)
    qty_out = float(row.qty_out or 0.0)
    return {
        "product_id": product_id,
        "as_of": to_iso_date(as_of),
        "quantity_in": qty_in,
        "quantity_out": qty_out,
        "net": qty_in - qty_out,
    }


def get_net_balances(product_ids: Iterable[int], as_of: date | None = None) -> dict[int, float]:
    """Net balance for several products in one query; products without entries map to 0."""
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    q = db.session.query(
        StockLedgerEntry.product_id,
        func.coalesce(func.sum(StockLedgerEntry.quantity_in), 0.0),
        func.coalesce(func.sum(StockLedgerEntry.quantity_out), 0.0),
    ).filter(StockLedgerEntry.product_id.in_(ids))
    if as_of is not None:
        q = q.filter(StockLedgerEntry.date <= as_of)
    balances = {pid: 0.0 for pid in ids}
    for pid, qty_in, qty_out in q.group_by(StockLedgerEntry.product_id).all():
        balances[pid] = float(qty_in or 0.0) - float(qty_out or 0.0)
    return balances


def list_entries(
    product_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    transaction_types: Optional[Iterable[str]] = None,
    source_type: str | None = None,
    related_id: int | None = None,
    limit: int | None = None,
) -> list[StockLedgerEntry]:
    """Entries for a product in ledger order (date, then id), ascending."""
    q = db.session.query(StockLedgerEntry).filter(StockLedgerEntry.product_id == product_id)
    if start_date is not None:
        q = q.filter(StockLedgerEntry.date >= start_date)
    if end_date is not None:
        q = q.filter(StockLedgerEntry.date <= end_date)
    if transaction_types:
        q = q.filter(StockLedgerEntry.transaction_type.in_(list(transaction_types)))
    if source_type is not None:
        q = q.filter(StockLedgerEntry.source_type == source_type)
    if related_id is not None:
        q = q.filter(StockLedgerEntry.related_id == related_id)
    q = q.order_by(StockLedgerEntry.date.asc(), StockLedgerEntry.id.asc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def entries_for_source(source_type: str, related_id: int, transaction_types: Optional[Iterable[str]] = None):
    q = db.session.query(StockLedgerEntry).filter(
        StockLedgerEntry.source_type == source_type,
        StockLedgerEntry.related_id == related_id,
    )
    if transaction_types:
        q = q.filter(StockLedgerEntry.transaction_type.in_(list(transaction_types)))
    return q.order_by(StockLedgerEntry.id.asc()).all()


def entries_with_running_balance(
    product_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    """
    Stock ledger view of one product: opening balance before start_date,
    then every entry with the running balance after it.

    Dual-unit products also get the balance in their secondary unit.
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)

    opening = 0.0
    if start_date is not None:
        row = (
            _balance_query(product_id, None)
            .filter(StockLedgerEntry.date < start_date)
            .one()
        )
        opening = float(row.qty_in or 0.0) - float(row.qty_out or 0.0)

    running = opening
    rows = []
    for entry in list_entries(product_id, start_date=start_date, end_date=end_date):
        running += entry.quantity_in - entry.quantity_out
        data = entry.to_dict()
        data["balance"] = running
        data["balance_secondary"] = secondary_display(product, running)
        rows.append(data)

    return {
        "product": product.to_dict(),
        "start_date": to_iso_date(start_date),
        "end_date": to_iso_date(end_date),
        "opening_balance": opening,
        "opening_balance_secondary": secondary_display(product, opening),
        "entries": rows,
        "closing_balance": running,
        "closing_balance_secondary": secondary_display(product, running),
    }


def delete_source_entries(source_type: str, related_id: int, transaction_types: Iterable[str]) -> int:
    """
    Remove one source document's entries (flush only; the caller commits).

    The only sanctioned deletion path; see inventory_service.reverse().
    """
    entries = entries_for_source(source_type, related_id, transaction_types)
    with reversal_scope(db.session):
        for entry in entries:
            db.session.delete(entry)
        db.session.flush()
    return len(entries)


def secondary_display(product: Product, primary_quantity: float):
    """Secondary-unit figure for display, or None for single-unit products."""
    if not product.has_dual_units:
        return None
    return unit_service.to_secondary(product, abs(primary_quantity)) * (1 if primary_quantity >= 0 else -1)
