# Overview: Source documents (sales, purchases, production logs) committed together with their ledger batches.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..exceptions import BatchWriteFailed, DocumentNotFound, ProductNotFound, StockLedgerError
from ..extensions import db
from ..models import Product, ProductionLog, Purchase, Sale
from ..models.ledger import SOURCE_PRODUCTION, SOURCE_PURCHASE, SOURCE_SALE
from ..time_utils import today
from . import inventory_service
from .concurrency import ledger_write_lock, run_with_retry
"""
A document and its ledger batch share one transaction:

    create: insert document -> flush (id) -> record_*(commit=False) -> commit
    delete: reverse(commit=False) -> delete document -> commit

Any failure rolls back both, so a committed document always has its
entries and a deleted one never leaves them behind.
"""

DOCUMENT_MODELS = {
    SOURCE_SALE: Sale,
    SOURCE_PURCHASE: Purchase,
    SOURCE_PRODUCTION: ProductionLog,
}

_RECORDERS = {
    SOURCE_SALE: inventory_service.record_sale,
    SOURCE_PURCHASE: inventory_service.record_purchase,
    SOURCE_PRODUCTION: inventory_service.record_production,
}

_EXTRA_FIELDS = {
    SOURCE_SALE: ("bill_no",),
    SOURCE_PURCHASE: ("bill_no",),
    SOURCE_PRODUCTION: ("batch_no",),
}


def _model_for(source_type: str):
    model = DOCUMENT_MODELS.get(source_type)
    if model is None:
        raise ValueError(f"Unknown document type: {source_type}")
    return model


def _storage_failure(action: str, source_type: str, exc: Exception) -> BatchWriteFailed:
    return BatchWriteFailed(
        f"{source_type} could not be {action}; nothing was written",
        {"source_type": source_type, "cause": exc.__class__.__name__},
    )


def create_document(source_type: str, *, patch: dict) -> dict:
    """
    Insert a sale / purchase / production log and record its ledger batch.

    `patch` is a validated payload: product_id, quantity, optional unit,
    date and note, plus bill_no or batch_no.
    """
    model = _model_for(source_type)
    recorder = _RECORDERS[source_type]

    def _op():
        with ledger_write_lock():
            product = db.session.get(Product, patch["product_id"])
            if product is None:
                raise ProductNotFound(patch["product_id"])

            doc = model(
                company_id=product.company_id,
                product_id=product.id,
                date=patch.get("date") or today(),
                quantity=patch["quantity"],
                unit=patch.get("unit") or None,
                note=patch.get("note"),
            )
            for field in _EXTRA_FIELDS[source_type]:
                setattr(doc, field, patch.get(field))
            db.session.add(doc)
            db.session.flush()

            entries = recorder(
                doc.id, product.id, doc.quantity, doc.unit,
                occurred_on=doc.date, note=doc.note, commit=False,
            )
            db.session.commit()
            return doc, entries

    try:
        doc, entries = run_with_retry(_op)
    except (OperationalError, StaleDataError) as exc:
        current_app.logger.exception("Failed to record %s after retries", source_type)
        raise _storage_failure("recorded", source_type, exc) from exc
    except StockLedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to record %s", source_type)
        raise _storage_failure("recorded", source_type, exc) from exc

    return {
        "document": doc.to_dict(),
        "ledger_entries": [e.to_dict() for e in entries],
    }


def delete_document(source_type: str, document_id: int) -> dict:
    """Delete a document and reverse its ledger batch in one transaction."""
    model = _model_for(source_type)

    def _op():
        with ledger_write_lock():
            doc = db.session.get(model, document_id)
            if doc is None:
                raise DocumentNotFound(source_type, document_id)
            removed = inventory_service.reverse(source_type, document_id, commit=False)
            db.session.delete(doc)
            db.session.commit()
            return removed

    try:
        removed = run_with_retry(_op)
    except (OperationalError, StaleDataError) as exc:
        current_app.logger.exception("Failed to delete %s %s after retries", source_type, document_id)
        raise _storage_failure("deleted", source_type, exc) from exc
    except StockLedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to delete %s %s", source_type, document_id)
        raise _storage_failure("deleted", source_type, exc) from exc

    return {"deleted": True, "id": document_id, "ledger_entries_removed": removed}


def get_document(source_type: str, document_id: int) -> dict:
    doc = db.session.get(_model_for(source_type), document_id)
    if doc is None:
        raise DocumentNotFound(source_type, document_id)
    return doc.to_dict()


def list_documents(
    source_type: str,
    *,
    company_id: int | None = None,
    product_id: int | None = None,
) -> list[dict]:
    model = _model_for(source_type)
    q = db.session.query(model)
    if company_id is not None:
        q = q.filter(model.company_id == company_id)
    if product_id is not None:
        q = q.filter(model.product_id == product_id)
    return [d.to_dict() for d in q.order_by(model.date.asc(), model.id.asc()).all()]
