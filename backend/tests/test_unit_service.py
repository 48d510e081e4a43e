"""
Unit converter tests: linear conversion, storage rounding, unit validation.
"""
import math

import pytest

from stockledger.exceptions import InvalidConversion
from stockledger.models import Product
from stockledger.services import unit_service


def _product(**kwargs):
    defaults = dict(id=1, company_id=1, name="P", primary_unit="BAG", has_dual_units=False,
                    maintain_stock=True, is_manufactured=False)
    defaults.update(kwargs)
    return Product(**defaults)


def test_secondary_to_primary_is_division_by_rate(app):
    p = _product(secondary_unit="KG", conversion_rate=20.0, has_dual_units=True)
    assert unit_service.to_primary(p, 24, "KG") == pytest.approx(1.2)
    assert unit_service.to_primary(p, 3, "BAG") == 3
    assert unit_service.to_primary(p, 3, None) == 3


def test_unit_names_are_case_insensitive(app):
    p = _product(secondary_unit="KG", conversion_rate=20.0, has_dual_units=True)
    assert unit_service.to_primary(p, 40, " kg ") == pytest.approx(2.0)


def test_conversion_round_trip(app):
    p = _product(secondary_unit="KG", conversion_rate=37.5, has_dual_units=True)
    for q in (0.001, 1, 24, 1234.5678):
        primary = unit_service.to_primary(p, q, "KG")
        assert math.isclose(unit_service.to_secondary(p, primary), q, rel_tol=1e-12)


def test_unknown_unit_rejected(app):
    p = _product(secondary_unit="KG", conversion_rate=20.0, has_dual_units=True)
    with pytest.raises(InvalidConversion):
        unit_service.to_primary(p, 1, "LTR")


def test_secondary_fields_ignored_without_dual_units(app):
    p = _product(secondary_unit="KG", conversion_rate=20.0, has_dual_units=False)
    with pytest.raises(InvalidConversion):
        unit_service.to_primary(p, 24, "KG")
    with pytest.raises(InvalidConversion):
        unit_service.to_secondary(p, 1)


@pytest.mark.parametrize("rate", [None, 0.0, -5.0, float("nan")])
def test_dual_units_need_positive_rate(app, rate):
    p = _product(secondary_unit="KG", conversion_rate=rate, has_dual_units=True)
    with pytest.raises(InvalidConversion):
        unit_service.to_primary(p, 1, "KG")


def test_dual_units_need_secondary_unit(app):
    p = _product(secondary_unit=None, conversion_rate=20.0, has_dual_units=True)
    with pytest.raises(InvalidConversion):
        unit_service.validate_unit_configuration(p)


def test_has_dual_units_is_strict_boolean():
    with pytest.raises(ValueError):
        _product(has_dual_units=1)
    with pytest.raises(ValueError):
        _product(has_dual_units="false")


@pytest.mark.parametrize("bad", [-1, float("inf"), "abc", True, None])
def test_bad_quantities_rejected(app, bad):
    p = _product()
    with pytest.raises(InvalidConversion):
        unit_service.to_primary(p, bad)


def test_whole_count_units_round_up(app):
    p = _product()
    assert unit_service.round_for_storage(p, "BAG", 1.2) == 2
    assert unit_service.round_for_storage(p, "PCS", 3.0) == 3
    assert unit_service.round_for_storage(p, "BAG", 0.0001) == 1


def test_float_noise_does_not_round_up(app):
    p = _product()
    # 0.1 * 3 == 0.30000000000000004; 10 of those is exactly 3 units of stock.
    assert unit_service.round_for_storage(p, "BAG", 10 * (0.1 * 3)) == 3


def test_fractional_units_keep_precision(app):
    p = _product(primary_unit="KG")
    assert unit_service.round_for_storage(p, "KG", 1.234) == 1.234
    assert unit_service.round_for_storage(p, "ltr", 0.5) == 0.5


def test_rounding_is_idempotent(app):
    p = _product()
    for unit in ("BAG", "KG", "PCS", "MTR"):
        for q in (0, 0.2, 1.2, 2.0, 7.999999, 19.5):
            once = unit_service.round_for_storage(p, unit, q)
            assert unit_service.round_for_storage(p, unit, once) == once


def test_markers_match_inside_unit_names(app):
    assert unit_service.is_fractional_unit("KGS")
    assert unit_service.is_fractional_unit("PKG")
    assert unit_service.round_for_storage(_product(), "PKG", 1.5) == 1.5
    assert not unit_service.is_fractional_unit("BOX")


def test_fractional_markers_come_from_config(app, monkeypatch):
    monkeypatch.setitem(app.config, "FRACTIONAL_UNIT_MARKERS", ("BAG",))
    assert unit_service.is_fractional_unit("BAG")
    assert not unit_service.is_fractional_unit("KG")


def test_ledger_quantity_converts_then_rounds(app):
    p = _product(secondary_unit="KG", conversion_rate=20.0, has_dual_units=True)
    assert unit_service.to_ledger_quantity(p, 24, "KG") == 2.0
    assert unit_service.transaction_unit(p, "KG") == ("KG", 20.0)
    assert unit_service.transaction_unit(p, None) == ("BAG", 1.0)
