# Overview: Flask API routes for product master data; parses input and returns JSON responses.

# backend/stockledger/routes/products.py
"""
Product management routes.

Products are created and edited here; the ledger engine only reads them.
The unit invariant (has_dual_units -> secondary_unit and conversion_rate > 0)
is enforced on create and update.
"""
from flask import Blueprint, current_app, request

from ..exceptions import StockLedgerError
from ..models import Product
from ..services import products_service
from ..validation import (
    PRODUCT_POLICY,
    ConflictError,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)
from .errors import ledger_error_response

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List products with optional pagination.

    Query params:
    - company_id: int (optional)
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    company_id = request.args.get("company_id", type=int)
    page = request.args.get("page", type=int)
    per_page = request.args.get("per_page", type=int)

    return products_service.list_products(company_id=company_id, page=page, per_page=per_page)


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = products_service.create_product(patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValidationError as e:
        return {"error": str(e)}, 400
    except StockLedgerError as e:
        return ledger_error_response(e)

    return created, 201


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return products_service.get_product(product_id).to_dict()
    except StockLedgerError as e:
        return ledger_error_response(e)


@products_bp.put("/<int:product_id>")
def update_product_route(product_id: int):
    """
    Update a product. company_id cannot be changed.
    """
    payload = request.get_json(silent=True) or {}
    if "company_id" in payload:
        return {"error": "company_id cannot be changed"}, 400

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        return products_service.update_product(product_id=product_id, patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except StockLedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product %s", product_id)
        return {"error": "Failed to update product"}, 500
