# Overview: Bill-of-materials definitions and their expansion into ingredient consumption.

from __future__ import annotations

import math
from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..exceptions import FormulaNotFound, InvalidConversion, InvalidFormula, ProductNotFound
from ..models import Product, ProductFormula
from ..models.inventory import UNIT_TYPE_PRIMARY, UNIT_TYPE_SECONDARY, UNIT_TYPES
from . import unit_service
"""
Formula Invariants (authoritative)

- ProductFormula.quantity is per ONE unit of output, in the ingredient's
  primary or secondary unit (unit_type). Quantities entered against a batch
  of formula_base_qty units are divided by that batch size when stored.
- Ingredients keep stock (maintain_stock=True) and belong to the same
  company as the product.
- No formula may reference itself, directly or transitively. The check is a
  bounded-depth traversal run before an entry is written.
- Expansion is ONE level deep: producing X consumes X's ingredients; it never
  produces the ingredients themselves.
"""

MAX_FORMULA_DEPTH = 32


@dataclass(frozen=True)
class Consumption:
    """One ingredient's share of a production/sale event, ready for the ledger."""
    ingredient_id: int
    quantity: float  # ingredient primary unit, rounded for storage
    formula_quantity: float  # before conversion, in trans_unit
    trans_unit: str
    trans_conversion_factor: float


def get_formula(product_id: int) -> list[ProductFormula]:
    return (
        db.session.query(ProductFormula)
        .filter_by(product_id=product_id)
        .order_by(ProductFormula.id.asc())
        .all()
    )


def has_formula(product_id: int) -> bool:
    return db.session.query(ProductFormula.id).filter_by(product_id=product_id).first() is not None


def expand(product: Product, produced_quantity: float, *, require_formula: bool = False) -> list[Consumption]:
    """
    Resolve `product`'s formula into ingredient consumption for `produced_quantity`.

    `produced_quantity` is in the product's primary unit. Returns [] when the
    product has no formula, unless `require_formula` is set.

    Raises:
        FormulaNotFound: require_formula and no formula entries
        InvalidFormula: an ingredient no longer keeps stock
        InvalidConversion: an ingredient's units cannot express the entry
    """
    if isinstance(produced_quantity, bool) or not isinstance(produced_quantity, (int, float)):
        raise InvalidConversion("produced quantity must be a number", {"quantity": produced_quantity})
    if not math.isfinite(produced_quantity) or produced_quantity < 0:
        raise InvalidConversion(
            "produced quantity must be a finite, non-negative number",
            {"quantity": produced_quantity},
        )

    entries = get_formula(product.id)
    if not entries:
        if require_formula:
            raise FormulaNotFound(product.id)
        return []

    consumptions: list[Consumption] = []
    for entry in entries:
        ingredient = entry.ingredient
        if not ingredient.maintain_stock:
            raise InvalidFormula(
                f"Ingredient {ingredient.id} of product {product.id} does not maintain stock",
                {"product_id": product.id, "ingredient_id": ingredient.id},
            )

        if entry.unit_type == UNIT_TYPE_SECONDARY:
            unit = ingredient.secondary_unit if ingredient.has_dual_units else None
            if unit is None:
                raise InvalidConversion(
                    f"Formula entry {entry.id} uses the secondary unit of ingredient {ingredient.id}, "
                    f"which has no dual units",
                    {"formula_id": entry.id, "ingredient_id": ingredient.id},
                )
        else:
            unit = ingredient.primary_unit

        consumed = produced_quantity * entry.quantity
        quantity = unit_service.to_ledger_quantity(ingredient, consumed, unit)
        trans_unit, factor = unit_service.transaction_unit(ingredient, unit)

        if quantity <= 0:
            continue

        consumptions.append(Consumption(
            ingredient_id=ingredient.id,
            quantity=quantity,
            formula_quantity=consumed,
            trans_unit=trans_unit,
            trans_conversion_factor=factor,
        ))

    return consumptions


def would_create_cycle(product_id: int, ingredient_id: int, *, max_depth: int = MAX_FORMULA_DEPTH) -> bool:
    """
    True if adding `ingredient_id` to `product_id`'s formula closes a loop.

    Walks the ingredient's own formula tree breadth-first, at most
    `max_depth` levels; a tree deeper than that is treated as a loop.
    """
    if product_id == ingredient_id:
        return True

    frontier = {ingredient_id}
    seen = set(frontier)
    for _ in range(max_depth):
        rows = (
            db.session.query(ProductFormula.ingredient_id)
            .filter(ProductFormula.product_id.in_(frontier))
            .all()
        )
        next_frontier = set()
        for (child_id,) in rows:
            if child_id == product_id:
                return True
            if child_id not in seen:
                seen.add(child_id)
                next_frontier.add(child_id)
        if not next_frontier:
            return False
        frontier = next_frontier
    return True


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def set_formula_entry(
    *,
    product_id: int,
    ingredient_id: int,
    quantity: float,
    unit_type: str = UNIT_TYPE_PRIMARY,
    base_qty: float | None = None,
    commit: bool = True,
) -> ProductFormula:
    """
    Add or replace one ingredient line of a product's formula.

    `quantity` is what the user entered for a batch of `base_qty` output
    units (defaults to the product's formula_base_qty); it is stored per one
    unit of output.
    """
    product = _get_product(product_id)
    ingredient = _get_product(ingredient_id)

    unit_type = (unit_type or UNIT_TYPE_PRIMARY).strip().lower()
    if unit_type not in UNIT_TYPES:
        raise InvalidFormula(f"unit_type must be one of {UNIT_TYPES}", {"unit_type": unit_type})

    if ingredient.company_id != product.company_id:
        raise InvalidFormula(
            "Ingredient belongs to a different company",
            {"product_id": product_id, "ingredient_id": ingredient_id},
        )
    if not ingredient.maintain_stock:
        raise InvalidFormula(
            f"Ingredient {ingredient_id} does not maintain stock",
            {"ingredient_id": ingredient_id},
        )
    if unit_type == UNIT_TYPE_SECONDARY:
        if not ingredient.has_dual_units:
            raise InvalidFormula(
                f"Ingredient {ingredient_id} has no secondary unit",
                {"ingredient_id": ingredient_id},
            )
        unit_service.validate_unit_configuration(ingredient)

    if base_qty is None:
        base_qty = product.formula_base_qty or 1.0
    try:
        quantity = float(quantity)
        base_qty = float(base_qty)
    except (TypeError, ValueError):
        raise InvalidFormula("quantity and base_qty must be numbers")
    if not (math.isfinite(quantity) and quantity > 0):
        raise InvalidFormula("quantity must be positive", {"quantity": quantity})
    if not (math.isfinite(base_qty) and base_qty > 0):
        raise InvalidFormula("base_qty must be positive", {"base_qty": base_qty})

    if would_create_cycle(product_id, ingredient_id):
        raise InvalidFormula(
            f"Adding ingredient {ingredient_id} to product {product_id} creates a formula cycle",
            {"product_id": product_id, "ingredient_id": ingredient_id},
        )

    per_unit = quantity / base_qty

    entry = (
        db.session.query(ProductFormula)
        .filter_by(product_id=product_id, ingredient_id=ingredient_id)
        .first()
    )
    if entry is None:
        entry = ProductFormula(product_id=product_id, ingredient_id=ingredient_id)
        db.session.add(entry)
    entry.quantity = per_unit
    entry.unit_type = unit_type

    if commit:
        db.session.commit()
    else:
        db.session.flush()

    current_app.logger.info(
        "Formula entry set: product=%s ingredient=%s quantity=%s %s",
        product_id, ingredient_id, per_unit, unit_type,
    )
    return entry


def remove_formula_entry(entry_id: int, *, commit: bool = True) -> bool:
    entry = db.session.get(ProductFormula, entry_id)
    if entry is None:
        return False
    db.session.delete(entry)
    if commit:
        db.session.commit()
    return True


def set_formula_base_qty(product_id: int, base_qty: float, *, commit: bool = True) -> Product:
    """
    Change the batch size new formula entries are entered against.

    Existing entries are already stored per unit and are not rescaled.
    """
    product = _get_product(product_id)
    try:
        base_qty = float(base_qty)
    except (TypeError, ValueError):
        raise InvalidFormula("base_qty must be a number")
    if not (math.isfinite(base_qty) and base_qty > 0):
        raise InvalidFormula("base_qty must be positive", {"base_qty": base_qty})
    product.formula_base_qty = base_qty
    if commit:
        db.session.commit()
    return product
