# Overview: Read-only integrity checks over the stock ledger and its source documents.

from __future__ import annotations

import math
from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy import func

from ..exceptions import ProductNotFound
from ..extensions import db
from ..models import ProductionLog, Product, Purchase, Sale, StockLedgerEntry
from ..models.ledger import (
    SOURCE_PRODUCTION,
    SOURCE_PURCHASE,
    SOURCE_SALE,
    TX_PRODUCTION,
    TX_PURCHASE,
    TX_SALE,
)
from . import ledger_service
from .concurrency import ledger_write_lock
"""
Integrity Auditor Invariants (authoritative)

- Read-only. Findings are reported, never repaired; the only repair path is
  inventory_service.reverse(), invoked explicitly by an operator.
- An orphan is an entry whose source_type names a document table and whose
  related_id no longer resolves in it. Orphans are values, not errors.
- Each product is audited under the ledger write lock: no batch (and no
  document created or deleted with its batch) commits between the reads,
  so entries, orphans, document counts and the SQL balance describe one
  state of the ledger.
- Orphans and entry counts are derived from the one load of the entries.
- recompute_balance (exact, over the loaded rows) is compared with
  ledger_service.get_balance, the SQL sum every balance view serves.
- Recomputation uses exact summation (math.fsum): the result does not depend
  on entry order.
"""

# source_type -> (document model, transaction type it produces for its own product)
DOCUMENT_SOURCES = {
    SOURCE_SALE: (Sale, TX_SALE),
    SOURCE_PURCHASE: (Purchase, TX_PURCHASE),
    SOURCE_PRODUCTION: (ProductionLog, TX_PRODUCTION),
}


@dataclass(frozen=True)
class OrphanReference:
    entry_id: int
    product_id: int
    transaction_type: str
    source_type: str
    related_id: int

    def to_dict(self) -> dict:
        return asdict(self)


def find_orphans(company_id: int | None = None, product_id: int | None = None) -> list[OrphanReference]:
    """Entries pointing at a sale, purchase or production log that no longer exists."""
    orphans: list[OrphanReference] = []
    for source_type, (model, _) in DOCUMENT_SOURCES.items():
        q = (
            db.session.query(StockLedgerEntry)
            .outerjoin(model, model.id == StockLedgerEntry.related_id)
            .filter(
                StockLedgerEntry.source_type == source_type,
                StockLedgerEntry.related_id.isnot(None),
                model.id.is_(None),
            )
        )
        if company_id is not None:
            q = q.filter(StockLedgerEntry.company_id == company_id)
        if product_id is not None:
            q = q.filter(StockLedgerEntry.product_id == product_id)
        for entry in q.order_by(StockLedgerEntry.id.asc()).all():
            orphans.append(OrphanReference(
                entry_id=entry.id,
                product_id=entry.product_id,
                transaction_type=entry.transaction_type,
                source_type=entry.source_type,
                related_id=entry.related_id,
            ))
    return sorted(orphans, key=lambda o: o.entry_id)


def _document_counts(product_id: int) -> dict[str, int]:
    counts = {}
    for source_type, (model, _) in DOCUMENT_SOURCES.items():
        counts[source_type] = (
            db.session.query(func.count(model.id)).filter(model.product_id == product_id).scalar() or 0
        )
    return counts


def _entry_counts(entries: list[StockLedgerEntry]) -> dict[str, int]:
    counts = {source_type: 0 for source_type in DOCUMENT_SOURCES}
    for e in entries:
        source = DOCUMENT_SOURCES.get(e.source_type)
        if source is not None and e.transaction_type == source[1]:
            counts[e.source_type] += 1
    return counts


def _count_report(product: Product, entries: list[StockLedgerEntry]) -> dict:
    documents = _document_counts(product.id)
    ledger = _entry_counts(entries)
    report = {}
    for source_type in DOCUMENT_SOURCES:
        # Non-stock products never get entries of their own.
        expected = documents[source_type] if product.maintain_stock else 0
        report[source_type] = {
            "documents": documents[source_type],
            "ledger_entries": ledger[source_type],
            "mismatch": expected != ledger[source_type],
        }
    return report


def count_mismatch(product_id: int) -> dict:
    """Per document type: number of source documents vs. the ledger entries they produced."""
    with ledger_write_lock():
        product = _get_product(product_id)
        entries = _load_entries(product_id)
        counts = _count_report(product, entries)
    return {
        "product_id": product_id,
        "count_mismatch": any(c["mismatch"] for c in counts.values()),
        "counts": counts,
    }


def recompute_balance(entries) -> dict:
    entries = list(entries)
    qty_in = math.fsum(e.quantity_in or 0.0 for e in entries)
    qty_out = math.fsum(e.quantity_out or 0.0 for e in entries)
    return {
        "entries": len(entries),
        "quantity_in": qty_in,
        "quantity_out": qty_out,
        "net": math.fsum([qty_in, -qty_out]),
    }


def _load_entries(product_id: int) -> list[StockLedgerEntry]:
    return (
        db.session.query(StockLedgerEntry)
        .filter(StockLedgerEntry.product_id == product_id)
        .order_by(StockLedgerEntry.date.asc(), StockLedgerEntry.id.asc())
        .all()
    )


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def _orphans_in(entries: list[StockLedgerEntry]) -> list[OrphanReference]:
    """Orphans among already-loaded entries; one id lookup per document table."""
    referenced: dict[str, set[int]] = {}
    for e in entries:
        if e.source_type in DOCUMENT_SOURCES and e.related_id is not None:
            referenced.setdefault(e.source_type, set()).add(e.related_id)

    existing: dict[str, set[int]] = {}
    for source_type, ids in referenced.items():
        model = DOCUMENT_SOURCES[source_type][0]
        existing[source_type] = {row[0] for row in db.session.query(model.id).filter(model.id.in_(ids))}

    return [
        OrphanReference(
            entry_id=e.id,
            product_id=e.product_id,
            transaction_type=e.transaction_type,
            source_type=e.source_type,
            related_id=e.related_id,
        )
        for e in sorted(entries, key=lambda e: e.id)
        if e.source_type in referenced and e.related_id not in existing[e.source_type]
    ]


def audit_product(product_id: int) -> dict:
    """
    Orphans, document/entry count reconciliation and a balance check for one product.

    `recomputed_balance` is the exact sum of the loaded entries;
    `ledger_balance` is what ledger_service.get_balance serves. They are
    compared within BALANCE_TOLERANCE.
    """
    with ledger_write_lock():
        product = _get_product(product_id)
        entries = _load_entries(product_id)
        orphans = [o.to_dict() for o in _orphans_in(entries)]
        counts = _count_report(product, entries)
        derived = ledger_service.get_balance(product_id)

    recomputed = recompute_balance(entries)
    tolerance = current_app.config.get("BALANCE_TOLERANCE", 1e-9)
    diverged = abs(derived["net"] - recomputed["net"]) > tolerance

    report = {
        "product_id": product_id,
        "product_name": product.name,
        "orphans": orphans,
        "count_mismatch": any(c["mismatch"] for c in counts.values()),
        "counts": counts,
        "recomputed_balance": recomputed,
        "ledger_balance": derived,
        "balance_diverged": diverged,
    }

    if orphans or report["count_mismatch"] or diverged:
        current_app.logger.warning(
            "Audit findings for product %s: orphans=%s count_mismatch=%s diverged=%s",
            product_id, len(orphans), report["count_mismatch"], diverged,
        )
    return report


def audit_company(company_id: int) -> dict:
    products = (
        db.session.query(Product)
        .filter(Product.company_id == company_id, Product.maintain_stock.is_(True))
        .order_by(Product.id.asc())
        .all()
    )
    reports = [audit_product(p.id) for p in products]
    return {
        "company_id": company_id,
        "products": reports,
        "products_with_findings": [
            r["product_id"] for r in reports
            if r["orphans"] or r["count_mismatch"] or r["balance_diverged"]
        ],
    }
