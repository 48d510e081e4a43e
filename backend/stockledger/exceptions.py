# backend/stockledger/exceptions.py
"""
Typed errors for the stock ledger engine.

Every error carries a machine-readable ``code`` and a ``details`` dict so
routes and the CLI can report it without parsing messages.

    StockLedgerError
    +-- InvalidConversion          bad/missing unit configuration, unknown unit
    +-- FormulaNotFound            a required bill of materials is absent
    +-- InvalidFormula             cycle, non-stock ingredient, cross-company entry
    +-- InvalidProductConfiguration
    +-- NegativeStockRejected      batch would drive a no-backorder product below zero
    +-- DuplicateRecording         source document already has ledger entries
    +-- InvalidLedgerEntry         malformed entry handed to the ledger store
    +-- BatchWriteFailed           storage failure; nothing from the batch was written
    +-- LedgerImmutabilityError    in-place update or unsanctioned delete of an entry
    +-- ProductNotFound
    +-- DocumentNotFound

Conversion, expansion and policy errors are raised before any write is
attempted. Orphaned entries are not errors: the auditor reports them as
``OrphanReference`` values (see services/audit_service.py).
"""
from __future__ import annotations


class StockLedgerError(Exception):
    """Base class for ledger engine errors."""
    code = "STOCK_LEDGER_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class InvalidConversion(StockLedgerError):
    code = "INVALID_CONVERSION"


class FormulaNotFound(StockLedgerError):
    code = "FORMULA_NOT_FOUND"

    def __init__(self, product_id: int):
        super().__init__(
            f"Product {product_id} has no formula defined",
            {"product_id": product_id},
        )
        self.product_id = product_id


class InvalidFormula(StockLedgerError):
    code = "INVALID_FORMULA"


class InvalidProductConfiguration(StockLedgerError):
    code = "INVALID_PRODUCT"


class NegativeStockRejected(StockLedgerError):
    code = "NEGATIVE_STOCK_REJECTED"

    def __init__(self, product_id: int, balance: float, requested_out: float):
        super().__init__(
            f"Product {product_id} would go negative: balance {balance}, batch net out {requested_out}",
            {"product_id": product_id, "balance": balance, "requested_out": requested_out},
        )
        self.product_id = product_id


class DuplicateRecording(StockLedgerError):
    code = "DUPLICATE_RECORDING"

    def __init__(self, source_type: str, related_id: int):
        super().__init__(
            f"{source_type} {related_id} already has ledger entries",
            {"source_type": source_type, "related_id": related_id},
        )


class InvalidLedgerEntry(StockLedgerError):
    code = "INVALID_ENTRY"


class BatchWriteFailed(StockLedgerError):
    code = "BATCH_WRITE_FAILED"


class LedgerImmutabilityError(StockLedgerError):
    code = "LEDGER_IMMUTABLE"


class ProductNotFound(StockLedgerError):
    code = "NOT_FOUND"

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", {"product_id": product_id})


class DocumentNotFound(StockLedgerError):
    code = "NOT_FOUND"

    def __init__(self, source_type: str, document_id: int):
        super().__init__(
            f"{source_type} {document_id} not found",
            {"source_type": source_type, "document_id": document_id},
        )
