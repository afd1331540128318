from .inventory import Product, StockMovement
from .customers import Customer, CustomerLedgerEntry
from .invoices import Invoice, InvoiceItem
from .returns import Return, ReturnItem
from .payments import Payment, PaymentAllocation
from .audit import DomainEventRecord, BalanceCorrection

__all__ = [
    'Product', 'StockMovement',
    'Customer', 'CustomerLedgerEntry',
    'Invoice', 'InvoiceItem',
    'Return', 'ReturnItem',
    'Payment', 'PaymentAllocation',
    'DomainEventRecord', 'BalanceCorrection',
]
