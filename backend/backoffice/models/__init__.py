from .catalog import Product
from .customers import Customer
from .orders import Order, OrderItem
from .cash import CashSession, CashMovement
from .ledger import LedgerEntry
from .documents import CreditNote, CreditNoteLine, DocumentSequence

__all__ = [
    'Product',
    'Customer',
    'Order', 'OrderItem',
    'CashSession', 'CashMovement',
    'LedgerEntry',
    'CreditNote', 'CreditNoteLine', 'DocumentSequence',
]
