# backend/stockledger/routes/companies.py
"""
Company routes: every product, document and ledger entry belongs to one company.
"""
from flask import Blueprint, request

from ..models import Company
from ..services import products_service
from ..validation import COMPANY_POLICY, ValidationError, validate_payload

companies_bp = Blueprint("companies", __name__, url_prefix="/api/companies")


@companies_bp.get("")
def list_companies():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    items = products_service.list_companies(include_inactive=include_inactive)
    return {"items": items, "count": len(items)}


@companies_bp.post("")
def create_company_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Company, payload=payload, policy=COMPANY_POLICY, partial=False)
        created = products_service.create_company(patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    return created, 201
