from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..time_utils import to_utc_z

UNIT_TYPE_PRIMARY = "primary"
UNIT_TYPE_SECONDARY = "secondary"
UNIT_TYPES = (UNIT_TYPE_PRIMARY, UNIT_TYPE_SECONDARY)


def _strict_bool(key: str, value, *, nullable: bool = False):
    if value is None and nullable:
        return None
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean, got {type(value).__name__}")
    return value


class Product(db.Model):
    """
    Product master data, including its unit configuration.

    UNITS:
    - primary_unit is the unit of account. Every ledger quantity for this
      product is stored in it.
    - secondary_unit / conversion_rate only apply when has_dual_units is
      True: secondary = primary * conversion_rate.
    - has_dual_units is a strict boolean. When False the secondary fields are
      ignored, whatever they hold.

    INVARIANT (checked by products_service and the unit converter):
    has_dual_units -> secondary_unit present and conversion_rate > 0.

    FORMULA:
    - is_manufactured marks products that must have a formula to be produced.
    - formula_base_qty is the batch size the formula was authored against;
      ProductFormula.quantity is already normalized per one unit of output.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_products_company_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    hsn_code = db.Column(db.String(32), nullable=True)

    primary_unit = db.Column(db.String(32), nullable=False, default="PCS")
    secondary_unit = db.Column(db.String(32), nullable=True)
    conversion_rate = db.Column(db.Float, nullable=True)
    has_dual_units = db.Column(db.Boolean, nullable=False, default=False)

    maintain_stock = db.Column(db.Boolean, nullable=False, default=True)
    is_manufactured = db.Column(db.Boolean, nullable=False, default=False)
    formula_base_qty = db.Column(db.Float, nullable=False, default=1.0)

    # None -> deployment default (STOCK_ALLOW_BACKORDER)
    allow_backorder = db.Column(db.Boolean, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    company = db.relationship("Company", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @validates("has_dual_units", "maintain_stock", "is_manufactured")
    def _validate_flags(self, key, value):
        return _strict_bool(key, value)

    @validates("allow_backorder")
    def _validate_backorder(self, key, value):
        return _strict_bool(key, value, nullable=True)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} company_id={self.company_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "hsn_code": self.hsn_code,
            "primary_unit": self.primary_unit,
            "secondary_unit": self.secondary_unit,
            "conversion_rate": self.conversion_rate,
            "has_dual_units": self.has_dual_units,
            "maintain_stock": self.maintain_stock,
            "is_manufactured": self.is_manufactured,
            "formula_base_qty": self.formula_base_qty,
            "allow_backorder": self.allow_backorder,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductFormula(db.Model):
    """
    One bill-of-materials line: `quantity` of `ingredient` consumed per one
    unit of `product`, expressed in the ingredient's primary or secondary
    unit (unit_type).
    """
    __tablename__ = "product_formulas"
    __table_args__ = (
        db.UniqueConstraint("product_id", "ingredient_id", name="uq_product_formulas_product_ingredient"),
        db.CheckConstraint("quantity > 0", name="ck_product_formulas_quantity_positive"),
        db.CheckConstraint("product_id <> ingredient_id", name="ck_product_formulas_not_self"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Float, nullable=False)
    unit_type = db.Column(db.String(16), nullable=False, default=UNIT_TYPE_PRIMARY)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship(
        "Product",
        foreign_keys=[product_id],
        backref=db.backref("formula_entries", lazy=True, order_by="ProductFormula.id"),
    )
    ingredient = db.relationship("Product", foreign_keys=[ingredient_id])

    @validates("unit_type")
    def _validate_unit_type(self, key, value):
        value = (value or UNIT_TYPE_PRIMARY).strip().lower()
        if value not in UNIT_TYPES:
            raise ValueError(f"unit_type must be one of {UNIT_TYPES}")
        return value

    def __repr__(self) -> str:
        return (
            f"<ProductFormula id={self.id} product_id={self.product_id} "
            f"ingredient_id={self.ingredient_id} quantity={self.quantity} {self.unit_type}>"
        )

    def to_dict(self) -> dict:
        ingredient = self.ingredient
        return {
            "id": self.id,
            "product_id": self.product_id,
            "ingredient_id": self.ingredient_id,
            "ingredient_name": ingredient.name if ingredient else None,
            "quantity": self.quantity,
            "unit_type": self.unit_type,
            "unit": (
                ingredient.secondary_unit
                if ingredient and self.unit_type == UNIT_TYPE_SECONDARY
                else (ingredient.primary_unit if ingredient else None)
            ),
            "created_at": to_utc_z(self.created_at),
        }
