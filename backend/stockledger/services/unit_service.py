# Overview: Unit conversion and storage rounding for product quantities.

from __future__ import annotations

import math

from flask import current_app, has_app_context

from ..config import DEFAULT_FRACTIONAL_UNIT_MARKERS
from ..exceptions import InvalidConversion
"""
Unit Converter Invariants (authoritative)

- Conversion is linear: secondary = primary * conversion_rate,
  primary = secondary / conversion_rate.
- The ledger stores PRIMARY units only. Conversion happens before an entry
  is written, never after.
- Secondary units exist only while has_dual_units is True; otherwise the
  stored secondary_unit / conversion_rate are ignored.
- Whole-count units (anything that is not a fractional weight/volume/length
  unit) are rounded UP before storage: 1.2 BAG consumed is stored as 2 BAG.
  Fractional units keep full precision.
- round_for_storage is idempotent.
"""

DEFAULT_QUANTITY_DECIMALS = 9


def normalize_unit(unit: str | None) -> str:
    return (unit or "").strip().upper()


def _fractional_markers() -> tuple[str, ...]:
    if has_app_context():
        return tuple(current_app.config.get("FRACTIONAL_UNIT_MARKERS", DEFAULT_FRACTIONAL_UNIT_MARKERS))
    return DEFAULT_FRACTIONAL_UNIT_MARKERS


def _quantity_decimals() -> int:
    if has_app_context():
        return int(current_app.config.get("QUANTITY_DECIMALS", DEFAULT_QUANTITY_DECIMALS))
    return DEFAULT_QUANTITY_DECIMALS


def is_fractional_unit(unit: str | None) -> bool:
    """True when `unit` names a weight/volume/length unit that may hold fractions."""
    name = normalize_unit(unit)
    if not name:
        return False
    # Substring match: "KGS" and "PKG" both contain KG and count as fractional.
    return any(marker in name for marker in _fractional_markers())


def _require_quantity(quantity) -> float:
    if isinstance(quantity, bool):
        raise InvalidConversion("quantity must be a number", {"quantity": quantity})
    try:
        value = float(quantity)
    except (TypeError, ValueError):
        raise InvalidConversion("quantity must be a number", {"quantity": quantity})
    if not math.isfinite(value) or value < 0:
        raise InvalidConversion("quantity must be a finite, non-negative number", {"quantity": quantity})
    return value


def validate_unit_configuration(product) -> None:
    """
    Raise InvalidConversion when a dual-unit product lacks a usable secondary unit.

    Products without dual units always pass, whatever their secondary fields hold.
    """
    if not normalize_unit(product.primary_unit):
        raise InvalidConversion(
            f"Product {product.id} has no primary unit",
            {"product_id": product.id},
        )
    if product.has_dual_units is not True:
        return
    if not normalize_unit(product.secondary_unit):
        raise InvalidConversion(
            f"Product {product.id} has dual units but no secondary unit",
            {"product_id": product.id},
        )
    rate = product.conversion_rate
    if rate is None or not math.isfinite(rate) or rate <= 0:
        raise InvalidConversion(
            f"Product {product.id} has dual units but conversion_rate is {rate!r}",
            {"product_id": product.id, "conversion_rate": rate},
        )


def resolve_unit(product, unit: str | None) -> str:
    """
    Map a caller-supplied unit to "primary" or "secondary" for `product`.

    None or an empty unit means the primary unit.
    """
    validate_unit_configuration(product)
    name = normalize_unit(unit)
    if not name or name == normalize_unit(product.primary_unit):
        return "primary"
    if product.has_dual_units and name == normalize_unit(product.secondary_unit):
        return "secondary"
    raise InvalidConversion(
        f"Unit {unit!r} is neither the primary nor the secondary unit of product {product.id}",
        {
            "product_id": product.id,
            "unit": unit,
            "primary_unit": product.primary_unit,
            "secondary_unit": product.secondary_unit if product.has_dual_units else None,
        },
    )


def to_primary(product, quantity, source_unit: str | None = None) -> float:
    """Convert `quantity` expressed in `source_unit` to the product's primary unit."""
    value = _require_quantity(quantity)
    if resolve_unit(product, source_unit) == "secondary":
        return value / product.conversion_rate
    return value


def to_secondary(product, primary_quantity) -> float:
    """Convert a primary-unit quantity to the secondary unit (dual-unit products only)."""
    value = _require_quantity(primary_quantity)
    validate_unit_configuration(product)
    if not product.has_dual_units:
        raise InvalidConversion(
            f"Product {product.id} has no secondary unit",
            {"product_id": product.id},
        )
    return value * product.conversion_rate


def round_for_storage(product, unit: str | None, quantity) -> float:
    """
    Apply the storage rounding policy for `quantity` expressed in `unit`.

    Whole-count units round up. Float noise is removed first so that
    10 * 0.3 stores as 3, not 4.
    """
    value = _require_quantity(quantity)
    if unit is None:
        unit = product.primary_unit
    if is_fractional_unit(unit):
        return value
    return float(math.ceil(round(value, _quantity_decimals())))


def to_ledger_quantity(product, quantity, unit: str | None = None) -> float:
    """Quantity as it is written to the ledger: primary unit, rounded for storage."""
    primary = to_primary(product, quantity, unit)
    return round_for_storage(product, product.primary_unit, primary)


def transaction_unit(product, unit: str | None) -> tuple[str, float]:
    """(trans_unit, trans_conversion_factor) recorded alongside an entry, for display only."""
    if resolve_unit(product, unit) == "secondary":
        return product.secondary_unit, float(product.conversion_rate)
    return product.primary_unit, 1.0
