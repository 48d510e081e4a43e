# Overview: Flask API routes for stock positions, adjustments and integrity audits.

# backend/stockledger/routes/stock.py
"""
Stock routes.

Reads (balance, ledger view, audits) never lock. Adjustments and opening
stock go through the transaction recorder like every other write.
"""
from flask import Blueprint, current_app, request

from ..exceptions import StockLedgerError
from ..services import audit_service, inventory_service, ledger_service
from ..validation import ValidationError, optional_date, require_int, require_positive_number
from .errors import ledger_error_response

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/<int:product_id>/balance")
def get_balance_route(product_id: int):
    """
    Query params:
    - as_of: YYYY-MM-DD (optional, inclusive)
    """
    try:
        as_of = optional_date(request.args.get("as_of"), "as_of")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        return inventory_service.get_stock_summary(product_id, as_of=as_of)
    except StockLedgerError as e:
        return ledger_error_response(e)


@stock_bp.get("/<int:product_id>/ledger")
def get_ledger_route(product_id: int):
    """
    Query params:
    - start_date / end_date: YYYY-MM-DD (optional, inclusive)
    """
    try:
        start_date = optional_date(request.args.get("start_date"), "start_date")
        end_date = optional_date(request.args.get("end_date"), "end_date")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        return ledger_service.entries_with_running_balance(product_id, start_date=start_date, end_date=end_date)
    except StockLedgerError as e:
        return ledger_error_response(e)


@stock_bp.post("/adjustments")
def create_adjustment_route():
    """
    Body: {product_id, quantity, direction: "in"|"out", unit?, date?, note?, reference_id?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        product_id = require_int(payload, "product_id")
        quantity = require_positive_number(payload, "quantity")
        reference_id = require_int(payload, "reference_id", required=False)
        occurred_on = optional_date(payload.get("date"), "date")
        direction = payload.get("direction")
        if direction not in ("in", "out"):
            raise ValidationError("direction must be 'in' or 'out'")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        entries = inventory_service.record_adjustment(
            product_id,
            quantity,
            payload.get("unit"),
            direction=direction,
            reference_id=reference_id,
            occurred_on=occurred_on,
            note=payload.get("note"),
        )
    except StockLedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record adjustment")
        return {"error": "Failed to record adjustment"}, 500

    return {"ledger_entries": [e.to_dict() for e in entries]}, 201


@stock_bp.post("/opening")
def create_opening_route():
    """
    Body: {product_id, quantity, unit?, date?, note?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        product_id = require_int(payload, "product_id")
        quantity = require_positive_number(payload, "quantity")
        occurred_on = optional_date(payload.get("date"), "date")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        entries = inventory_service.record_opening(
            product_id, quantity, payload.get("unit"), occurred_on=occurred_on, note=payload.get("note"),
        )
    except StockLedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record opening stock")
        return {"error": "Failed to record opening stock"}, 500

    return {"ledger_entries": [e.to_dict() for e in entries]}, 201


@stock_bp.get("/<int:product_id>/audit")
def audit_product_route(product_id: int):
    try:
        return audit_service.audit_product(product_id)
    except StockLedgerError as e:
        return ledger_error_response(e)


@stock_bp.get("/orphans")
def orphans_route():
    company_id = request.args.get("company_id", type=int)
    orphans = audit_service.find_orphans(company_id=company_id)
    return {"items": [o.to_dict() for o in orphans], "count": len(orphans)}
