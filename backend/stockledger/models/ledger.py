from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z

TX_OPENING = "OPENING"
TX_PURCHASE = "PURCHASE"
TX_SALE = "SALE"
TX_PRODUCTION = "PRODUCTION"
TX_CONSUMPTION = "CONSUMPTION"
TX_ADJUSTMENT = "ADJUSTMENT"

TRANSACTION_TYPES = (
    TX_OPENING,
    TX_PURCHASE,
    TX_SALE,
    TX_PRODUCTION,
    TX_CONSUMPTION,
    TX_ADJUSTMENT,
)

SOURCE_SALE = "sale"
SOURCE_PURCHASE = "purchase"
SOURCE_PRODUCTION = "production"
SOURCE_ADJUSTMENT = "adjustment"
SOURCE_OPENING = "opening"

SOURCE_TYPES = (
    SOURCE_SALE,
    SOURCE_PURCHASE,
    SOURCE_PRODUCTION,
    SOURCE_ADJUSTMENT,
    SOURCE_OPENING,
)


class StockLedgerEntry(db.Model):
    """
    One immutable stock movement.

    Invariants:
    - quantity_in / quantity_out are non-negative and in the product's
      PRIMARY unit; exactly one of them is positive.
    - trans_unit / trans_conversion_factor record how the source document
      expressed the quantity. Display only, never used to reinterpret
      quantity_in / quantity_out.
    - (source_type, related_id) names the originating document. The
      document may since have been deleted; the auditor reports such rows as
      orphans.
    - Rows are never updated (db/immutability.py). They are only deleted by
      inventory_service.reverse(), one source document at a time.

    Balance = SUM(quantity_in) - SUM(quantity_out), optionally as-of a date.
    """
    __tablename__ = "stock_ledger"
    __table_args__ = (
        db.Index("ix_stock_ledger_product_date", "product_id", "date", "id"),
        db.Index("ix_stock_ledger_source", "source_type", "related_id"),
        db.CheckConstraint("quantity_in >= 0", name="ck_stock_ledger_in_non_negative"),
        db.CheckConstraint("quantity_out >= 0", name="ck_stock_ledger_out_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Business date of the movement
    date = db.Column(db.Date, nullable=False, index=True)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)

    quantity_in = db.Column(db.Float, nullable=False, default=0.0)
    quantity_out = db.Column(db.Float, nullable=False, default=0.0)

    trans_unit = db.Column(db.String(32), nullable=True)
    trans_conversion_factor = db.Column(db.Float, nullable=False, default=1.0)

    source_type = db.Column(db.String(16), nullable=False)
    related_id = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    product = db.relationship("Product")

    @property
    def net(self) -> float:
        return self.quantity_in - self.quantity_out

    def __repr__(self) -> str:
        return (
            f"<StockLedgerEntry id={self.id} product_id={self.product_id} {self.transaction_type} "
            f"in={self.quantity_in} out={self.quantity_out} {self.source_type}#{self.related_id}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "product_id": self.product_id,
            "date": to_iso_date(self.date),
            "transaction_type": self.transaction_type,
            "quantity_in": self.quantity_in,
            "quantity_out": self.quantity_out,
            "trans_unit": self.trans_unit,
            "trans_conversion_factor": self.trans_conversion_factor,
            "source_type": self.source_type,
            "related_id": self.related_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
