from .tenancy import Company
from .inventory import Product, ProductFormula
from .ledger import StockLedgerEntry
from .documents import Sale, Purchase, ProductionLog

__all__ = [
    'Company',
    'Product', 'ProductFormula',
    'StockLedgerEntry',
    'Sale', 'Purchase', 'ProductionLog',
]
