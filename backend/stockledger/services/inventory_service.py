# Overview: Transaction recorder; turns business events into atomic stock ledger batches.

# backend/stockledger/services/inventory_service.py

from __future__ import annotations

from datetime import date
from typing import Callable

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..exceptions import (
    BatchWriteFailed,
    DuplicateRecording,
    InvalidLedgerEntry,
    NegativeStockRejected,
    ProductNotFound,
    StockLedgerError,
)
from ..models import Product, StockLedgerEntry
from ..models.ledger import (
    SOURCE_ADJUSTMENT,
    SOURCE_OPENING,
    SOURCE_PRODUCTION,
    SOURCE_PURCHASE,
    SOURCE_SALE,
    TX_ADJUSTMENT,
    TX_CONSUMPTION,
    TX_OPENING,
    TX_PRODUCTION,
    TX_PURCHASE,
    TX_SALE,
)
from ..time_utils import parse_iso_date, today
from . import formula_service, ledger_service, unit_service
from .concurrency import ledger_write_lock, lock_for_update, lock_products, run_with_retry
"""
Transaction Recorder Invariants (authoritative)

- This module is the only writer of stock_ledger rows.
- Every business event becomes ONE batch: all conversions, the formula
  expansion, the duplicate check and the negative-stock check run first;
  then the batch is appended in a single transaction.
- Quantities are converted to the primary unit and rounded for storage
  before an entry is built (unit_service.to_ledger_quantity).
- Products with maintain_stock=False get no entries of their own; their
  formula ingredients still do.
- Entries carry (source_type, related_id) of the triggering document, so a
  document's batch can be reversed as a unit.
- DuplicateRecording is detected from existing entries. An event with no
  stock effect (a maintain_stock=False product without a formula) leaves
  nothing behind, so recording it again is a no-op, not an error; one
  recording per document is guaranteed by document_service, which records
  each document exactly once when it is created.

Event shapes:
- SALE:        SALE out (product) + CONSUMPTION out per ingredient
               (AUTO_PRODUCE_ON_SALE="deficit": PRODUCTION in + CONSUMPTION
               out only for the shortfall below zero)
- PURCHASE:    PURCHASE in
- PRODUCTION:  PRODUCTION in (product) + CONSUMPTION out per ingredient
- ADJUSTMENT:  ADJUSTMENT in or out, no expansion
- OPENING:     OPENING in, no expansion

Reversal removes every entry of one document whose type is reversible for
that document type, in one transaction.
"""

REVERSIBLE_TYPES = {
    SOURCE_SALE: (TX_SALE, TX_PRODUCTION, TX_CONSUMPTION),
    SOURCE_PURCHASE: (TX_PURCHASE,),
    SOURCE_PRODUCTION: (TX_PRODUCTION, TX_CONSUMPTION),
}

DOCUMENT_SOURCES = frozenset(REVERSIBLE_TYPES)

AUTO_PRODUCE_ALWAYS = "always"
AUTO_PRODUCE_DEFICIT = "deficit"


def _get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFound(product_id)
    return product


def _occurred_on(value) -> date:
    try:
        d = parse_iso_date(value)
    except ValueError:
        raise InvalidLedgerEntry("occurred_on must be an ISO-8601 date", {"occurred_on": value})
    return d or today()


def _require_positive(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)) or not quantity > 0:
        raise InvalidLedgerEntry("quantity must be a positive number", {"quantity": quantity})


def _allows_backorder(product: Product) -> bool:
    if product.allow_backorder is not None:
        return product.allow_backorder
    return bool(current_app.config.get("STOCK_ALLOW_BACKORDER", True))


def _entry(
    product: Product,
    transaction_type: str,
    *,
    occurred_on: date,
    source_type: str,
    related_id: int | None,
    quantity_in: float = 0.0,
    quantity_out: float = 0.0,
    trans_unit: str | None = None,
    trans_conversion_factor: float = 1.0,
    note: str | None = None,
) -> StockLedgerEntry:
    return StockLedgerEntry(
        company_id=product.company_id,
        product_id=product.id,
        date=occurred_on,
        transaction_type=transaction_type,
        quantity_in=quantity_in,
        quantity_out=quantity_out,
        trans_unit=trans_unit or product.primary_unit,
        trans_conversion_factor=trans_conversion_factor,
        source_type=source_type,
        related_id=related_id,
        note=note,
    )


def _consumption_entries(
    consumptions: list[formula_service.Consumption],
    *,
    occurred_on: date,
    source_type: str,
    related_id: int | None,
    note: str | None,
) -> list[StockLedgerEntry]:
    entries = []
    for c in consumptions:
        ingredient = _get_product(c.ingredient_id)
        entries.append(_entry(
            ingredient,
            TX_CONSUMPTION,
            occurred_on=occurred_on,
            source_type=source_type,
            related_id=related_id,
            quantity_out=c.quantity,
            trans_unit=c.trans_unit,
            trans_conversion_factor=c.trans_conversion_factor,
            note=note,
        ))
    return entries


def _check_negative_stock(entries: list[StockLedgerEntry]) -> None:
    """Reject the batch if it drives a no-backorder product below zero."""
    deltas: dict[int, float] = {}
    for e in entries:
        deltas[e.product_id] = deltas.get(e.product_id, 0.0) + e.quantity_in - e.quantity_out

    debited = [pid for pid, delta in deltas.items() if delta < 0]
    if not debited:
        return

    tolerance = current_app.config.get("BALANCE_TOLERANCE", 1e-9)
    balances = ledger_service.get_net_balances(debited)
    for pid in debited:
        product = _get_product(pid)
        if _allows_backorder(product):
            continue
        if balances[pid] + deltas[pid] < -tolerance:
            current_app.logger.warning(
                "Negative stock rejected: product=%s balance=%s delta=%s", pid, balances[pid], deltas[pid]
            )
            raise NegativeStockRejected(pid, balances[pid], -deltas[pid])


def _ensure_not_recorded(source_type: str, related_id: int) -> None:
    if ledger_service.entries_for_source(source_type, related_id):
        current_app.logger.warning("Duplicate recording rejected: %s %s", source_type, related_id)
        raise DuplicateRecording(source_type, related_id)


def _record_batch(
    *,
    event: str,
    source_type: str,
    related_id: int | None,
    build: Callable[[], list[StockLedgerEntry]],
    commit: bool,
) -> list[StockLedgerEntry]:
    """
    Build, check and append one event's batch under the ledger write lock.

    With commit=False the caller owns the transaction (and the retry loop):
    the batch is flushed next to the caller's pending source document and
    storage conflicts propagate unchanged.
    """
    def _op():
        with ledger_write_lock():
            entries = build()
            lock_products(e.product_id for e in entries)
            if related_id is not None and source_type in DOCUMENT_SOURCES:
                _ensure_not_recorded(source_type, related_id)
            _check_negative_stock(entries)
            return ledger_service.append_entries(entries, commit=commit)

    try:
        entries = run_with_retry(_op, attempts=None if commit else 1)
    except (OperationalError, StaleDataError) as exc:
        if not commit:
            raise
        current_app.logger.exception("Ledger batch for %s %s failed after retries", event, related_id)
        raise BatchWriteFailed(
            f"{event} {related_id} could not be recorded; nothing was written",
            {"event": event, "related_id": related_id, "cause": exc.__class__.__name__},
        ) from exc
    except StockLedgerError:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Ledger batch %s: %s #%s, %s entries%s",
        "committed" if commit else "staged", event, related_id, len(entries), "" if entries else " (no stock effect)",
    )
    return entries


def record_sale(
    sale_id: int,
    product_id: int,
    quantity: float,
    unit: str | None = None,
    *,
    occurred_on=None,
    note: str | None = None,
    commit: bool = True,
) -> list[StockLedgerEntry]:
    """
    Debit a sold product and the ingredients it is made from.

    The sold quantity is converted to the primary unit and rounded for
    storage; that stored quantity drives the formula expansion.
    """
    _require_positive(quantity)
    day = _occurred_on(occurred_on)

    def _build():
        product = _get_product(product_id, lock=True)
        primary_qty = unit_service.to_ledger_quantity(product, quantity, unit)
        trans_unit, factor = unit_service.transaction_unit(product, unit)

        entries = []
        if product.maintain_stock:
            entries.append(_entry(
                product, TX_SALE,
                occurred_on=day, source_type=SOURCE_SALE, related_id=sale_id,
                quantity_out=primary_qty, trans_unit=trans_unit, trans_conversion_factor=factor, note=note,
            ))

        mode = current_app.config.get("AUTO_PRODUCE_ON_SALE", AUTO_PRODUCE_ALWAYS)
        if mode == AUTO_PRODUCE_DEFICIT and product.maintain_stock:
            on_hand = ledger_service.get_balance(product.id)["net"]
            deficit = primary_qty - max(on_hand, 0.0)
            consumptions = []
            if deficit > 0 and (product.is_manufactured or formula_service.has_formula(product.id)):
                consumptions = formula_service.expand(product, deficit, require_formula=product.is_manufactured)
                entries.append(_entry(
                    product, TX_PRODUCTION,
                    occurred_on=day, source_type=SOURCE_SALE, related_id=sale_id,
                    quantity_in=deficit, note=note,
                ))
        else:
            consumptions = formula_service.expand(product, primary_qty, require_formula=product.is_manufactured)

        entries.extend(_consumption_entries(
            consumptions, occurred_on=day, source_type=SOURCE_SALE, related_id=sale_id, note=note,
        ))
        return entries

    return _record_batch(event="sale", source_type=SOURCE_SALE, related_id=sale_id, build=_build, commit=commit)


def record_purchase(
    purchase_id: int,
    product_id: int,
    quantity: float,
    unit: str | None = None,
    *,
    occurred_on=None,
    note: str | None = None,
    commit: bool = True,
) -> list[StockLedgerEntry]:
    """Credit a purchased product."""
    _require_positive(quantity)
    day = _occurred_on(occurred_on)

    def _build():
        product = _get_product(product_id, lock=True)
        primary_qty = unit_service.to_ledger_quantity(product, quantity, unit)
        trans_unit, factor = unit_service.transaction_unit(product, unit)
        if not product.maintain_stock:
            return []
        return [_entry(
            product, TX_PURCHASE,
            occurred_on=day, source_type=SOURCE_PURCHASE, related_id=purchase_id,
            quantity_in=primary_qty, trans_unit=trans_unit, trans_conversion_factor=factor, note=note,
        )]

    return _record_batch(
        event="purchase", source_type=SOURCE_PURCHASE, related_id=purchase_id, build=_build, commit=commit,
    )


def record_production(
    production_id: int,
    product_id: int,
    quantity: float,
    unit: str | None = None,
    *,
    occurred_on=None,
    note: str | None = None,
    commit: bool = True,
) -> list[StockLedgerEntry]:
    """
    Manual manufacture: credit the product, debit its ingredients.

    The product must have a formula (FormulaNotFound).
    """
    _require_positive(quantity)
    day = _occurred_on(occurred_on)

    def _build():
        product = _get_product(product_id, lock=True)
        primary_qty = unit_service.to_ledger_quantity(product, quantity, unit)
        trans_unit, factor = unit_service.transaction_unit(product, unit)
        consumptions = formula_service.expand(product, primary_qty, require_formula=True)

        entries = []
        if product.maintain_stock:
            entries.append(_entry(
                product, TX_PRODUCTION,
                occurred_on=day, source_type=SOURCE_PRODUCTION, related_id=production_id,
                quantity_in=primary_qty, trans_unit=trans_unit, trans_conversion_factor=factor, note=note,
            ))
        entries.extend(_consumption_entries(
            consumptions, occurred_on=day, source_type=SOURCE_PRODUCTION, related_id=production_id, note=note,
        ))
        return entries

    return _record_batch(
        event="production", source_type=SOURCE_PRODUCTION, related_id=production_id, build=_build, commit=commit,
    )


def record_adjustment(
    product_id: int,
    quantity: float,
    unit: str | None = None,
    *,
    direction: str = "in",
    reference_id: int | None = None,
    occurred_on=None,
    note: str | None = None,
    commit: bool = True,
) -> list[StockLedgerEntry]:
    """Manual correction: a direct ADJUSTMENT in or out, no formula expansion."""
    _require_positive(quantity)
    if direction not in ("in", "out"):
        raise InvalidLedgerEntry("direction must be 'in' or 'out'", {"direction": direction})
    day = _occurred_on(occurred_on)

    def _build():
        product = _get_product(product_id, lock=True)
        primary_qty = unit_service.to_ledger_quantity(product, quantity, unit)
        trans_unit, factor = unit_service.transaction_unit(product, unit)
        if not product.maintain_stock:
            return []
        return [_entry(
            product, TX_ADJUSTMENT,
            occurred_on=day, source_type=SOURCE_ADJUSTMENT, related_id=reference_id,
            quantity_in=primary_qty if direction == "in" else 0.0,
            quantity_out=primary_qty if direction == "out" else 0.0,
            trans_unit=trans_unit, trans_conversion_factor=factor, note=note,
        )]

    return _record_batch(
        event="adjustment", source_type=SOURCE_ADJUSTMENT, related_id=reference_id, build=_build, commit=commit,
    )


def record_opening(
    product_id: int,
    quantity: float,
    unit: str | None = None,
    *,
    occurred_on=None,
    note: str | None = None,
    commit: bool = True,
) -> list[StockLedgerEntry]:
    """Initial stock load for a product."""
    _require_positive(quantity)
    day = _occurred_on(occurred_on)

    def _build():
        product = _get_product(product_id, lock=True)
        primary_qty = unit_service.to_ledger_quantity(product, quantity, unit)
        trans_unit, factor = unit_service.transaction_unit(product, unit)
        if not product.maintain_stock:
            return []
        return [_entry(
            product, TX_OPENING,
            occurred_on=day, source_type=SOURCE_OPENING, related_id=None,
            quantity_in=primary_qty, trans_unit=trans_unit, trans_conversion_factor=factor,
            note=note or "Opening stock",
        )]

    return _record_batch(event="opening", source_type=SOURCE_OPENING, related_id=None, build=_build, commit=commit)


def reverse(source_type: str, source_id: int, *, commit: bool = True) -> int:
    """
    Remove every ledger entry of one source document, as one batch.

    Called when a sale, purchase or production log is deleted, and by the
    explicit `flask ledger reverse` cleanup command. Returns the number of
    entries removed (0 when the document had none).
    """
    if source_type not in REVERSIBLE_TYPES:
        raise InvalidLedgerEntry(
            f"{source_type!r} documents cannot be reversed",
            {"source_type": source_type, "reversible": sorted(REVERSIBLE_TYPES)},
        )

    def _op():
        with ledger_write_lock():
            removed = ledger_service.delete_source_entries(source_type, source_id, REVERSIBLE_TYPES[source_type])
            if commit:
                db.session.commit()
            return removed

    try:
        removed = run_with_retry(_op, attempts=None if commit else 1)
    except (OperationalError, StaleDataError) as exc:
        if not commit:
            raise
        raise BatchWriteFailed(
            f"Reversal of {source_type} {source_id} failed; nothing was removed",
            {"source_type": source_type, "source_id": source_id},
        ) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Reversal of %s %s failed", source_type, source_id)
        raise BatchWriteFailed(
            f"Reversal of {source_type} {source_id} failed; nothing was removed",
            {"source_type": source_type, "source_id": source_id},
        ) from exc

    current_app.logger.warning(
        "Ledger reversal %s: %s #%s, %s entries removed",
        "committed" if commit else "staged", source_type, source_id, removed,
    )
    return removed


def get_stock_summary(product_id: int, as_of=None) -> dict:
    """Balance plus the secondary-unit figure for display."""
    product = _get_product(product_id)
    as_of_date = parse_iso_date(as_of)
    balance = ledger_service.get_balance(product_id, as_of=as_of_date)
    balance["primary_unit"] = product.primary_unit
    balance["secondary_unit"] = product.secondary_unit if product.has_dual_units else None
    balance["net_secondary"] = ledger_service.secondary_display(product, balance["net"])
    return balance
