# backend/stockledger/services/products_service.py
"""
Products Service

Product master data is owned here; the ledger engine only reads it.

- create_product / update_product validate the unit invariant against the
  merged state: has_dual_units -> secondary_unit and conversion_rate > 0.
- A product's primary unit is frozen once it has ledger entries (stored
  quantities are in that unit).
- A product used as a formula ingredient must keep stock, and keep its
  secondary unit while a formula line is measured in it.
- Products are never deleted; their ledger history references them.
"""
from __future__ import annotations

from flask import current_app

from ..exceptions import InvalidConversion, InvalidProductConfiguration, ProductNotFound
from ..extensions import db
from ..models import Company, Product, ProductFormula, StockLedgerEntry
from ..models.inventory import UNIT_TYPE_SECONDARY
from ..validation import ConflictError, ValidationError
from . import unit_service

PRODUCT_MUTABLE_FIELDS = {
    "name", "hsn_code",
    "primary_unit", "secondary_unit", "conversion_rate", "has_dual_units",
    "maintain_stock", "is_manufactured", "formula_base_qty", "allow_backorder",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _check_unit_invariant(p: Product) -> None:
    try:
        unit_service.validate_unit_configuration(p)
    except InvalidConversion as exc:
        raise InvalidProductConfiguration(exc.message, exc.details) from exc


def _check_secondary_ingredient_use(p: Product) -> None:
    """Formula lines measuring this ingredient in its secondary unit need that unit to stay."""
    if p.has_dual_units and p.secondary_unit:
        return
    with db.session.no_autoflush:
        used_by = (
            db.session.query(ProductFormula.product_id)
            .filter(ProductFormula.ingredient_id == p.id, ProductFormula.unit_type == UNIT_TYPE_SECONDARY)
            .first()
        )
    if used_by is not None:
        raise InvalidProductConfiguration(
            "Product is a formula ingredient measured in its secondary unit and must keep dual units",
            {"product_id": p.id, "used_by": used_by[0]},
        )


def _require_unique_name(company_id: int, name: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Product.id).filter(Product.company_id == company_id, Product.name == name)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("A product with this name already exists for this company.")


def create_company(*, patch: dict) -> dict:
    name = (patch.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    company = Company(
        name=name,
        gst_number=patch.get("gst_number"),
        address=patch.get("address"),
        is_active=patch.get("is_active", True),
    )
    db.session.add(company)
    db.session.commit()
    current_app.logger.info("Company created: id=%s name=%s", company.id, company.name)
    return company.to_dict()


def list_companies(*, include_inactive: bool = False) -> list[dict]:
    q = db.session.query(Company)
    if not include_inactive:
        q = q.filter(Company.is_active.is_(True))
    return [c.to_dict() for c in q.order_by(Company.id.asc()).all()]


def get_product(product_id: int) -> Product:
    p = db.session.get(Product, product_id)
    if p is None:
        raise ProductNotFound(product_id)
    return p


def list_products(
    company_id: int | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional company filter and pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product).order_by(Product.name.asc(), Product.id.asc())
    if company_id is not None:
        base_query = base_query.filter(Product.company_id == company_id)

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def create_product(*, patch: dict) -> dict:
    """
    Create a product from a validated patch dict.

    Raises:
        ValidationError: company_id missing or unknown
        ConflictError: name already used in the company
        InvalidProductConfiguration: unit invariant violated
    """
    company_id = patch.get("company_id")
    if company_id is None or db.session.get(Company, company_id) is None:
        raise ValidationError("company_id must reference an existing company")

    name = patch.get("name")
    if not name:
        raise ValidationError("name is required")
    _require_unique_name(company_id, name)

    p = Product(
        company_id=company_id,
        primary_unit="PCS",
        has_dual_units=False,
        maintain_stock=True,
        is_manufactured=False,
        formula_base_qty=1.0,
    )
    apply_product_patch(p, patch)
    _check_unit_invariant(p)

    db.session.add(p)
    db.session.commit()
    current_app.logger.info("Product created: id=%s name=%s company=%s", p.id, p.name, p.company_id)
    return p.to_dict()


def update_product(*, product_id: int, patch: dict) -> dict:
    """
    Update a product.

    Raises:
        ProductNotFound
        ConflictError: new name already used in the company
        InvalidProductConfiguration: unit invariant, frozen primary unit, or
            maintain_stock turned off while the product is an ingredient, or
            dual units dropped while a formula measures it in its secondary unit
    """
    p = get_product(product_id)

    if "name" in patch and patch["name"] != p.name:
        _require_unique_name(p.company_id, patch["name"], exclude_id=p.id)

    if "primary_unit" in patch and patch["primary_unit"] != p.primary_unit:
        has_entries = (
            db.session.query(StockLedgerEntry.id).filter(StockLedgerEntry.product_id == p.id).first()
            is not None
        )
        if has_entries:
            raise InvalidProductConfiguration(
                "primary_unit cannot change once the product has ledger entries",
                {"product_id": p.id, "primary_unit": p.primary_unit},
            )

    if patch.get("maintain_stock") is False and p.maintain_stock:
        used_by = (
            db.session.query(ProductFormula.product_id)
            .filter(ProductFormula.ingredient_id == p.id)
            .first()
        )
        if used_by is not None:
            raise InvalidProductConfiguration(
                "Product is a formula ingredient and must keep stock",
                {"product_id": p.id, "used_by": used_by[0]},
            )

    apply_product_patch(p, patch)
    try:
        _check_unit_invariant(p)
        _check_secondary_ingredient_use(p)
    except InvalidProductConfiguration:
        db.session.rollback()
        raise

    db.session.commit()
    current_app.logger.info("Product updated: id=%s fields=%s", p.id, ", ".join(sorted(patch.keys())))
    return p.to_dict()
