from .auth import User, SessionToken
from .catalog import Product, BranchInventory
from .invoices import SalesInvoice, InvoiceItem, CreditPayment
from .finance import (
    Safe, SafeTransaction, Supplier, StockPurchase, AccountingEntry, ExpenseCategory, Expense,
)
from .system import DocumentSequence, IdempotencyKey, OutboxEvent, OperationLog

__all__ = [
    'User', 'SessionToken',
    'Product', 'BranchInventory',
    'SalesInvoice', 'InvoiceItem', 'CreditPayment',
    'Safe', 'SafeTransaction', 'Supplier', 'StockPurchase', 'AccountingEntry',
    'ExpenseCategory', 'Expense',
    'DocumentSequence', 'IdempotencyKey', 'OutboxEvent', 'OperationLog',
]
