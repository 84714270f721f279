from .auth import User
from .customers import Client
from .inventory import Product, InventoryTransaction, LedgerReference, Supplier
from .sales import Sale, SaleLine
from .documents import DocumentSequence

__all__ = [
    'User',
    'Client',
    'Product', 'InventoryTransaction', 'LedgerReference', 'Supplier',
    'Sale', 'SaleLine',
    'DocumentSequence',
]
