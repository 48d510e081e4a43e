# Overview: Flask API routes for sales, purchases and production logs; each write moves stock.

# backend/stockledger/routes/documents.py
"""
Source document routes.

POST creates the document and records its ledger batch in one transaction;
DELETE removes the document and reverses its batch in one transaction.

    /api/sales        Sale           -> SALE (+ CONSUMPTION)
    /api/purchases    Purchase       -> PURCHASE
    /api/production   ProductionLog  -> PRODUCTION + CONSUMPTION
"""
from flask import Blueprint, current_app, request

from ..exceptions import StockLedgerError
from ..models import ProductionLog, Purchase, Sale
from ..models.ledger import SOURCE_PRODUCTION, SOURCE_PURCHASE, SOURCE_SALE
from ..services import document_service
from ..validation import (
    PRODUCTION_POLICY,
    PURCHASE_POLICY,
    SALE_POLICY,
    ValidationError,
    enforce_rules_document,
    validate_payload,
)
from .errors import ledger_error_response


def _document_blueprint(name: str, url_prefix: str, source_type: str, model, policy) -> Blueprint:
    bp = Blueprint(name, __name__, url_prefix=url_prefix)

    @bp.get("")
    def list_documents():
        return {
            "items": document_service.list_documents(
                source_type,
                company_id=request.args.get("company_id", type=int),
                product_id=request.args.get("product_id", type=int),
            )
        }

    @bp.get("/<int:document_id>")
    def get_document(document_id: int):
        try:
            return document_service.get_document(source_type, document_id)
        except StockLedgerError as e:
            return ledger_error_response(e)

    @bp.post("")
    def create_document():
        payload = request.get_json(silent=True) or {}

        try:
            patch = validate_payload(model=model, payload=payload, policy=policy, partial=False)
            enforce_rules_document(patch)
        except ValidationError as e:
            return {"error": str(e)}, 400

        try:
            result = document_service.create_document(source_type, patch=patch)
        except StockLedgerError as e:
            return ledger_error_response(e)
        except Exception:
            current_app.logger.exception("Failed to create %s", source_type)
            return {"error": f"Failed to create {source_type}"}, 500

        return result, 201

    @bp.delete("/<int:document_id>")
    def delete_document(document_id: int):
        try:
            return document_service.delete_document(source_type, document_id)
        except StockLedgerError as e:
            return ledger_error_response(e)
        except Exception:
            current_app.logger.exception("Failed to delete %s %s", source_type, document_id)
            return {"error": f"Failed to delete {source_type}"}, 500

    return bp


sales_bp = _document_blueprint("sales", "/api/sales", SOURCE_SALE, Sale, SALE_POLICY)
purchases_bp = _document_blueprint("purchases", "/api/purchases", SOURCE_PURCHASE, Purchase, PURCHASE_POLICY)
production_bp = _document_blueprint(
    "production", "/api/production", SOURCE_PRODUCTION, ProductionLog, PRODUCTION_POLICY,
)
