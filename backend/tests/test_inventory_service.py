"""
Transaction recorder tests: event batches, negative-stock policy, atomicity, reversal.
"""
import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from stockledger.exceptions import (
    BatchWriteFailed,
    DuplicateRecording,
    FormulaNotFound,
    InvalidConversion,
    InvalidLedgerEntry,
    NegativeStockRejected,
)
from stockledger.extensions import db
from stockledger.models import StockLedgerEntry
from stockledger.services import inventory_service, ledger_service


def _entries(**filters):
    return db.session.query(StockLedgerEntry).filter_by(**filters).order_by(StockLedgerEntry.id).all()


def test_sale_in_secondary_unit_rounds_up_to_whole_bags(db_session, bag_product):
    inventory_service.record_sale(1, bag_product.id, 24, "KG", occurred_on="2024-04-01")

    [entry] = _entries(product_id=bag_product.id)
    assert entry.transaction_type == "SALE"
    assert entry.quantity_out == 2
    assert entry.quantity_in == 0
    assert entry.trans_unit == "KG"
    assert entry.trans_conversion_factor == 20.0
    assert entry.related_id == 1
    assert entry.source_type == "sale"


def test_production_consumes_ingredients(db_session, manufactured):
    q, r = manufactured

    inventory_service.record_production(5, q.id, 4)

    produced = _entries(product_id=q.id)
    consumed = _entries(product_id=r.id)
    assert [(e.transaction_type, e.quantity_in) for e in produced] == [("PRODUCTION", 4)]
    assert [(e.transaction_type, e.quantity_out) for e in consumed] == [("CONSUMPTION", 2)]
    assert {e.related_id for e in produced + consumed} == {5}
    assert {e.source_type for e in produced + consumed} == {"production"}


def test_sale_of_manufactured_product_consumes_ingredients(db_session, manufactured):
    q, r = manufactured

    inventory_service.record_sale(42, q.id, 4)

    assert [(e.transaction_type, e.quantity_out) for e in _entries(product_id=q.id)] == [("SALE", 4)]
    assert [(e.transaction_type, e.quantity_out) for e in _entries(product_id=r.id)] == [("CONSUMPTION", 2)]


def test_deficit_mode_produces_only_the_shortfall(app, db_session, manufactured, monkeypatch):
    monkeypatch.setitem(app.config, "AUTO_PRODUCE_ON_SALE", "deficit")
    q, r = manufactured
    inventory_service.record_opening(q.id, 1)

    inventory_service.record_sale(9, q.id, 4)

    sale_rows = _entries(source_type="sale", related_id=9)
    by_type = {(e.product_id, e.transaction_type): e for e in sale_rows}
    assert by_type[(q.id, "SALE")].quantity_out == 4
    assert by_type[(q.id, "PRODUCTION")].quantity_in == 3
    # 3 * 6 KG = 18 KG = 0.9 BAG -> 1 BAG
    assert by_type[(r.id, "CONSUMPTION")].quantity_out == 1
    assert ledger_service.get_balance(q.id)["net"] == 0


def test_deficit_mode_with_enough_stock_consumes_nothing(app, db_session, manufactured, monkeypatch):
    monkeypatch.setitem(app.config, "AUTO_PRODUCE_ON_SALE", "deficit")
    q, r = manufactured
    inventory_service.record_opening(q.id, 10)

    inventory_service.record_sale(9, q.id, 4)

    assert _entries(product_id=r.id) == []


def test_purchase_credits_product(db_session, bag_product):
    inventory_service.record_purchase(3, bag_product.id, 5)
    assert ledger_service.get_balance(bag_product.id)["net"] == 5


def test_non_stock_product_gets_no_entries_but_ingredients_do(db_session, make_product, make_formula):
    cement = make_product("Cement", primary_unit="BAG")
    service = make_product("Plastering Job", maintain_stock=False)
    make_formula(service, cement, 2)

    inventory_service.record_sale(11, service.id, 3)

    assert _entries(product_id=service.id) == []
    [consumption] = _entries(product_id=cement.id)
    assert consumption.quantity_out == 6


def test_adjustment_and_opening(db_session, make_product):
    p = make_product("Oil", primary_unit="LTR")
    inventory_service.record_opening(p.id, 10, occurred_on="2024-01-01")
    inventory_service.record_adjustment(p.id, 0.5, direction="out", note="leak")
    inventory_service.record_adjustment(p.id, 2, direction="in")

    types = [e.transaction_type for e in _entries(product_id=p.id)]
    assert types == ["OPENING", "ADJUSTMENT", "ADJUSTMENT"]
    assert ledger_service.get_balance(p.id)["net"] == pytest.approx(11.5)


def test_adjustment_direction_is_validated(db_session, make_product):
    p = make_product("Oil", primary_unit="LTR")
    with pytest.raises(InvalidLedgerEntry):
        inventory_service.record_adjustment(p.id, 1, direction="sideways")


def test_unknown_unit_writes_nothing(db_session, bag_product):
    with pytest.raises(InvalidConversion):
        inventory_service.record_sale(1, bag_product.id, 3, "LTR")
    assert _entries() == []


def test_manufactured_product_without_formula_cannot_be_produced(db_session, make_product):
    p = make_product("Widget", is_manufactured=True)
    with pytest.raises(FormulaNotFound):
        inventory_service.record_production(1, p.id, 2)
    assert _entries() == []


def test_production_always_needs_a_formula(db_session, make_product):
    p = make_product("Plain")
    with pytest.raises(FormulaNotFound):
        inventory_service.record_production(1, p.id, 2)


def test_duplicate_recording_rejected(db_session, bag_product):
    inventory_service.record_sale(7, bag_product.id, 1)
    with pytest.raises(DuplicateRecording):
        inventory_service.record_sale(7, bag_product.id, 1)
    assert len(_entries(product_id=bag_product.id)) == 1


def test_recording_without_stock_effect_can_repeat(db_session, make_product):
    service_fee = make_product("Delivery", maintain_stock=False)

    assert inventory_service.record_sale(9, service_fee.id, 1) == []
    assert inventory_service.record_sale(9, service_fee.id, 1) == []
    assert _entries() == []


def test_backorder_allowed_by_default(db_session, bag_product):
    inventory_service.record_sale(1, bag_product.id, 3)
    assert ledger_service.get_balance(bag_product.id)["net"] == -3


def test_negative_stock_rejected_when_backorder_disabled(app, db_session, manufactured, monkeypatch):
    monkeypatch.setitem(app.config, "STOCK_ALLOW_BACKORDER", False)
    q, r = manufactured
    inventory_service.record_opening(q.id, 10)
    inventory_service.record_opening(r.id, 1)

    # Q has enough stock but R would go to -1: the whole batch is rejected.
    with pytest.raises(NegativeStockRejected) as exc_info:
        inventory_service.record_sale(5, q.id, 4)

    assert exc_info.value.details["product_id"] == r.id
    assert _entries(source_type="sale") == []
    assert ledger_service.get_balance(q.id)["net"] == 10


def test_product_override_beats_deployment_policy(app, db_session, make_product, monkeypatch):
    monkeypatch.setitem(app.config, "STOCK_ALLOW_BACKORDER", True)
    strict = make_product("Strict", allow_backorder=False)
    with pytest.raises(NegativeStockRejected):
        inventory_service.record_sale(1, strict.id, 1)

    monkeypatch.setitem(app.config, "STOCK_ALLOW_BACKORDER", False)
    lenient = make_product("Lenient", allow_backorder=True)
    inventory_service.record_sale(2, lenient.id, 1)
    assert ledger_service.get_balance(lenient.id)["net"] == -1


def test_storage_failure_leaves_no_partial_batch(app, db_session, manufactured, monkeypatch):
    q, r = manufactured
    attempts = []

    def failing_commit(self):
        attempts.append(1)
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(Session, "commit", failing_commit)

    with pytest.raises(BatchWriteFailed):
        inventory_service.record_production(1, q.id, 4)

    monkeypatch.undo()
    assert len(attempts) == app.config["LEDGER_WRITE_RETRIES"]
    assert db_session.query(StockLedgerEntry).count() == 0


def test_transient_conflict_is_retried(app, db_session, manufactured, monkeypatch):
    q, r = manufactured
    real_commit = Session.commit
    calls = []

    def flaky_commit(self):
        calls.append(1)
        if len(calls) == 1:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        return real_commit(self)

    monkeypatch.setattr(Session, "commit", flaky_commit)
    inventory_service.record_production(1, q.id, 4)
    monkeypatch.undo()

    assert len(calls) == 2
    assert db_session.query(StockLedgerEntry).count() == 2


def test_reverse_sale_removes_whole_batch(db_session, manufactured, bag_product):
    q, r = manufactured
    inventory_service.record_sale(42, q.id, 4)
    inventory_service.record_sale(43, bag_product.id, 1)
    inventory_service.record_purchase(42, r.id, 10)

    removed = inventory_service.reverse("sale", 42)

    assert removed == 2
    assert _entries(source_type="sale", related_id=42) == []
    # Same id in another namespace and other sales are untouched
    assert len(_entries(source_type="purchase", related_id=42)) == 1
    assert len(_entries(source_type="sale", related_id=43)) == 1


def test_reverse_document_without_entries_is_a_noop(db_session):
    assert inventory_service.reverse("production", 999) == 0


def test_reverse_rejects_non_document_sources(db_session):
    with pytest.raises(InvalidLedgerEntry):
        inventory_service.reverse("adjustment", 1)


def test_reversed_document_can_be_recorded_again(db_session, bag_product):
    inventory_service.record_sale(5, bag_product.id, 1)
    inventory_service.reverse("sale", 5)
    inventory_service.record_sale(5, bag_product.id, 2)
    assert ledger_service.get_balance(bag_product.id)["net"] == -2


def test_stock_summary_includes_secondary_figure(db_session, bag_product):
    inventory_service.record_purchase(1, bag_product.id, 3)
    summary = inventory_service.get_stock_summary(bag_product.id)
    assert summary["net"] == 3
    assert summary["net_secondary"] == 60
    assert summary["secondary_unit"] == "KG"
