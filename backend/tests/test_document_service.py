"""
Document service tests: a document and its ledger batch commit and roll back together.
"""
import pytest

from stockledger.exceptions import DocumentNotFound, InvalidConversion, NegativeStockRejected
from stockledger.models import Sale, StockLedgerEntry
from stockledger.services import document_service


def test_sale_document_and_entries_commit_together(db_session, manufactured):
    q, r = manufactured

    result = document_service.create_document(
        "sale", patch={"product_id": q.id, "quantity": 4, "bill_no": "INV-42"},
    )

    sale = db_session.get(Sale, result["document"]["id"])
    assert sale.company_id == q.company_id
    assert len(result["ledger_entries"]) == 2
    assert {e["related_id"] for e in result["ledger_entries"]} == {sale.id}


def test_rejected_batch_rolls_back_the_document(db_session, bag_product):
    with pytest.raises(InvalidConversion):
        document_service.create_document(
            "sale", patch={"product_id": bag_product.id, "quantity": 1, "unit": "LTR", "bill_no": "X"},
        )

    assert db_session.query(Sale).count() == 0
    assert db_session.query(StockLedgerEntry).count() == 0


def test_negative_stock_rolls_back_the_document(app, db_session, make_product, monkeypatch):
    monkeypatch.setitem(app.config, "STOCK_ALLOW_BACKORDER", False)
    p = make_product("Scarce")

    with pytest.raises(NegativeStockRejected):
        document_service.create_document("sale", patch={"product_id": p.id, "quantity": 1, "bill_no": "X"})

    assert db_session.query(Sale).count() == 0


def test_delete_reverses_the_whole_batch(db_session, manufactured):
    q, r = manufactured
    created = document_service.create_document(
        "sale", patch={"product_id": q.id, "quantity": 4, "bill_no": "INV-42"},
    )
    sale_id = created["document"]["id"]

    result = document_service.delete_document("sale", sale_id)

    assert result == {"deleted": True, "id": sale_id, "ledger_entries_removed": 2}
    assert db_session.query(Sale).count() == 0
    assert db_session.query(StockLedgerEntry).filter_by(related_id=sale_id).count() == 0


def test_delete_missing_document(db_session):
    with pytest.raises(DocumentNotFound):
        document_service.delete_document("purchase", 404)


def test_list_documents_filters_by_product(db_session, bag_product, make_product):
    other = make_product("Other")
    document_service.create_document("purchase", patch={"product_id": bag_product.id, "quantity": 2, "bill_no": "P1"})
    document_service.create_document("purchase", patch={"product_id": other.id, "quantity": 2, "bill_no": "P2"})

    docs = document_service.list_documents("purchase", product_id=bag_product.id)
    assert [d["bill_no"] for d in docs] == ["P1"]
