from __future__ import annotations

from sqlalchemy.orm import declared_attr

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class _SourceDocumentMixin:
    """
    Columns shared by the business documents that drive ledger entries.

    The ledger engine only needs id, company, product, quantity and unit.
    Pricing and tax columns belong to other collaborators.
    """
    id = db.Column(db.Integer, primary_key=True)

    @declared_attr
    def company_id(cls):
        return db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    @declared_attr
    def product_id(cls):
        return db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    date = db.Column(db.Date, nullable=False, index=True)

    quantity = db.Column(db.Float, nullable=False)
    unit = db.Column(db.String(32), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def _base_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "product_id": self.product_id,
            "date": to_iso_date(self.date),
            "quantity": self.quantity,
            "unit": self.unit,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class Sale(_SourceDocumentMixin, db.Model):
    __tablename__ = "sales"
    __table_args__ = {"sqlite_autoincrement": True}

    bill_no = db.Column(db.String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<Sale id={self.id} bill_no={self.bill_no!r} product_id={self.product_id}>"

    def to_dict(self) -> dict:
        data = self._base_dict()
        data["bill_no"] = self.bill_no
        return data


class Purchase(_SourceDocumentMixin, db.Model):
    __tablename__ = "purchases"
    __table_args__ = {"sqlite_autoincrement": True}

    bill_no = db.Column(db.String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<Purchase id={self.id} bill_no={self.bill_no!r} product_id={self.product_id}>"

    def to_dict(self) -> dict:
        data = self._base_dict()
        data["bill_no"] = self.bill_no
        return data


class ProductionLog(_SourceDocumentMixin, db.Model):
    """Manual manufacture of a product, not driven by a sale."""
    __tablename__ = "production_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    batch_no = db.Column(db.String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<ProductionLog id={self.id} batch_no={self.batch_no!r} product_id={self.product_id}>"

    def to_dict(self) -> dict:
        data = self._base_dict()
        data["batch_no"] = self.batch_no
        return data
