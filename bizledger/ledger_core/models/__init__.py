from .account import Account
from .auditlog import AuditLog
from .banking import BankReconciliation, BankTransaction
from .business import Business
from .expense import Expense
from .gst import GSTRecord
from .inventory import InventoryMovement, InventoryProduct, ProductCategory
from .invoice import Invoice, InvoiceItem
from .ledger import LedgerEntry, Transaction
from .party import Customer, Vendor
from .payment import Payment
from .purchase import GRN, GRNItem, POItem, PurchaseOrder
from .sequence import DocumentSequence
