"""
Formula expander tests: one-level expansion, unit handling, formula maintenance rules.
"""
import pytest

from stockledger.exceptions import FormulaNotFound, InvalidConversion, InvalidFormula
from stockledger.models import ProductFormula
from stockledger.services import formula_service


def test_expansion_converts_secondary_formula_quantity(db_session, manufactured):
    q, r = manufactured

    consumptions = formula_service.expand(q, 4)

    assert len(consumptions) == 1
    c = consumptions[0]
    assert c.ingredient_id == r.id
    assert c.formula_quantity == pytest.approx(24.0)
    # 24 KG / 20 = 1.2 BAG -> ceiling -> 2 BAG
    assert c.quantity == 2.0
    assert c.trans_unit == "KG"
    assert c.trans_conversion_factor == 20.0


def test_expansion_primary_unit_entry(db_session, make_product, make_formula):
    sugar = make_product("Sugar", primary_unit="KG")
    cake = make_product("Cake", primary_unit="PCS")
    make_formula(cake, sugar, 0.25)

    [c] = formula_service.expand(cake, 3)
    assert c.quantity == pytest.approx(0.75)
    assert c.trans_unit == "KG"


def test_no_formula_returns_empty_list(db_session, make_product):
    plain = make_product("Plain")
    assert formula_service.expand(plain, 10) == []


def test_required_formula_missing_raises(db_session, make_product):
    plain = make_product("Plain", is_manufactured=True)
    with pytest.raises(FormulaNotFound):
        formula_service.expand(plain, 1, require_formula=True)


def test_expansion_is_one_level_deep(db_session, make_product, make_formula):
    wheat = make_product("Wheat")
    flour = make_product("Flour")
    bread = make_product("Bread")
    make_formula(flour, wheat, 2)
    make_formula(bread, flour, 3)

    consumptions = formula_service.expand(bread, 1)
    assert [c.ingredient_id for c in consumptions] == [flour.id]


def test_secondary_entry_on_single_unit_ingredient_is_rejected(db_session, make_product, make_formula):
    r = make_product("Salt", primary_unit="BAG", secondary_unit="KG", conversion_rate=25.0)
    q = make_product("Brine")
    make_formula(q, r, 1.0, unit_type="secondary")
    r.has_dual_units = False
    db_session.commit()

    with pytest.raises(InvalidConversion):
        formula_service.expand(q, 1)


def test_non_stock_ingredient_is_rejected_on_expand(db_session, make_product, make_formula):
    r = make_product("Water")
    q = make_product("Juice")
    make_formula(q, r, 1.0)
    r.maintain_stock = False
    db_session.commit()

    with pytest.raises(InvalidFormula):
        formula_service.expand(q, 1)


def test_negative_quantity_rejected(db_session, manufactured):
    q, _ = manufactured
    with pytest.raises(InvalidConversion):
        formula_service.expand(q, -1)


def test_set_formula_entry_normalizes_by_base_qty(db_session, make_product):
    flour = make_product("Flour", primary_unit="KG")
    bread = make_product("Bread", formula_base_qty=10.0)

    entry = formula_service.set_formula_entry(product_id=bread.id, ingredient_id=flour.id, quantity=5)
    assert entry.quantity == pytest.approx(0.5)

    entry = formula_service.set_formula_entry(product_id=bread.id, ingredient_id=flour.id, quantity=3, base_qty=1)
    assert entry.quantity == pytest.approx(3.0)
    assert db_session.query(ProductFormula).filter_by(product_id=bread.id).count() == 1


def test_set_formula_entry_rejects_cycles(db_session, make_product):
    a = make_product("A")
    b = make_product("B")
    c = make_product("C")
    formula_service.set_formula_entry(product_id=a.id, ingredient_id=b.id, quantity=1)
    formula_service.set_formula_entry(product_id=b.id, ingredient_id=c.id, quantity=1)

    with pytest.raises(InvalidFormula):
        formula_service.set_formula_entry(product_id=c.id, ingredient_id=a.id, quantity=1)
    with pytest.raises(InvalidFormula):
        formula_service.set_formula_entry(product_id=a.id, ingredient_id=a.id, quantity=1)


def test_set_formula_entry_rejects_other_company_and_non_stock(db_session, make_product, other_company):
    bread = make_product("Bread")
    foreign = make_product("Foreign Flour", company_id=other_company.id)
    service = make_product("Delivery Charge", maintain_stock=False)

    with pytest.raises(InvalidFormula):
        formula_service.set_formula_entry(product_id=bread.id, ingredient_id=foreign.id, quantity=1)
    with pytest.raises(InvalidFormula):
        formula_service.set_formula_entry(product_id=bread.id, ingredient_id=service.id, quantity=1)


def test_set_formula_entry_secondary_requires_dual_units(db_session, make_product):
    bread = make_product("Bread")
    flour = make_product("Flour", primary_unit="BAG")
    with pytest.raises(InvalidFormula):
        formula_service.set_formula_entry(
            product_id=bread.id, ingredient_id=flour.id, quantity=1, unit_type="secondary",
        )


def test_remove_formula_entry(db_session, manufactured):
    q, _ = manufactured
    [entry] = formula_service.get_formula(q.id)
    assert formula_service.remove_formula_entry(entry.id) is True
    assert formula_service.remove_formula_entry(entry.id) is False
    assert formula_service.get_formula(q.id) == []
