# Overview: Flask API routes for bills of materials; parses input and returns JSON responses.

# backend/stockledger/routes/formulas.py
"""
Formula (bill of materials) routes.

POST quantities are entered for a batch of `base_qty` output units (default:
the product's formula_base_qty) and stored per one unit of output.
"""
from flask import Blueprint, request

from ..exceptions import StockLedgerError
from ..services import formula_service, products_service
from ..validation import ValidationError, require_int, require_positive_number
from .errors import ledger_error_response

formulas_bp = Blueprint("formulas", __name__, url_prefix="/api/formulas")


@formulas_bp.get("/<int:product_id>")
def get_formula_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
    except StockLedgerError as e:
        return ledger_error_response(e)

    entries = formula_service.get_formula(product_id)
    return {
        "product_id": product_id,
        "is_manufactured": product.is_manufactured,
        "formula_base_qty": product.formula_base_qty,
        "items": [e.to_dict() for e in entries],
        "count": len(entries),
    }


@formulas_bp.post("")
def set_formula_entry_route():
    """
    Add or replace one ingredient line.

    Body: {product_id, ingredient_id, quantity, unit_type?: "primary"|"secondary", base_qty?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        product_id = require_int(payload, "product_id")
        ingredient_id = require_int(payload, "ingredient_id")
        quantity = require_positive_number(payload, "quantity")
        base_qty = require_positive_number(payload, "base_qty") if payload.get("base_qty") is not None else None
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        entry = formula_service.set_formula_entry(
            product_id=product_id,
            ingredient_id=ingredient_id,
            quantity=quantity,
            unit_type=payload.get("unit_type") or "primary",
            base_qty=base_qty,
        )
    except StockLedgerError as e:
        return ledger_error_response(e)

    return entry.to_dict(), 201


@formulas_bp.delete("/<int:entry_id>")
def delete_formula_entry_route(entry_id: int):
    if not formula_service.remove_formula_entry(entry_id):
        return {"error": "Formula entry not found"}, 404
    return {"deleted": True, "id": entry_id}


@formulas_bp.put("/<int:product_id>/base-qty")
def set_base_qty_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        base_qty = require_positive_number(payload, "base_qty")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product = formula_service.set_formula_base_qty(product_id, base_qty)
    except StockLedgerError as e:
        return ledger_error_response(e)

    return product.to_dict()
