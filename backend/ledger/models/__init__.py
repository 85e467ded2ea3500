from .catalog import Product, ProductComponent
from .customers import Customer, JobSite
from .receipts import Receipt, ReceiptItem, ReceiptItemComponent, StockMovement, RECEIPT_TYPES
from .payments import Payment, ReceiptPayment, PAYMENT_TYPES, RECEIPT_PAYMENT_TYPES
from .audit import AuditLog

__all__ = [
    'Product', 'ProductComponent',
    'Customer', 'JobSite',
    'Receipt', 'ReceiptItem', 'ReceiptItemComponent', 'StockMovement', 'RECEIPT_TYPES',
    'Payment', 'ReceiptPayment', 'PAYMENT_TYPES', 'RECEIPT_PAYMENT_TYPES',
    'AuditLog',
]
