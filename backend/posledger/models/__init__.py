from .auth import User, SessionToken
from .catalog import Store, Product, InventoryStock, StoreInventory
from .customers import Customer, LoyaltyConfig
from .ledger import LedgerBatch, LedgerEntry
from .audit import AuditLog
from .sales import Sale, SaleDetail
from .returns import Return, ReturnDetail
from .gift_cards import GiftCard
from .registers import CashRegister, CashMovement
from .stock import StockAdjustment, StockTransfer
from .credit import CreditSale, CreditPayment
from .accounting import Account
from .purchasing import Supplier, PurchaseOrder, PurchaseOrderItem

__all__ = [
    'User', 'SessionToken',
    'Store', 'Product', 'InventoryStock', 'StoreInventory',
    'Customer', 'LoyaltyConfig',
    'LedgerBatch', 'LedgerEntry',
    'AuditLog',
    'Sale', 'SaleDetail',
    'Return', 'ReturnDetail',
    'GiftCard',
    'CashRegister', 'CashMovement',
    'StockAdjustment', 'StockTransfer',
    'CreditSale', 'CreditPayment',
    'Account',
    'Supplier', 'PurchaseOrder', 'PurchaseOrderItem',
]
