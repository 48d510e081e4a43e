# backend/stockledger/routes/errors.py
"""
HTTP mapping for the engine's typed errors.

Body: {"error": message, "code": CODE, "details": {...}}
"""
from ..exceptions import StockLedgerError

STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "INVALID_ENTRY": 400,
    "DUPLICATE_RECORDING": 409,
    "NEGATIVE_STOCK_REJECTED": 409,
    "LEDGER_IMMUTABLE": 409,
    "INVALID_CONVERSION": 422,
    "FORMULA_NOT_FOUND": 422,
    "INVALID_FORMULA": 422,
    "INVALID_PRODUCT": 422,
    "BATCH_WRITE_FAILED": 503,
}


def ledger_error_response(exc: StockLedgerError):
    return exc.to_dict(), STATUS_BY_CODE.get(exc.code, 400)
