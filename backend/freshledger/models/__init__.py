from .stock import StockItem, InventoryLogEntry, STOCK_STATUSES
from .ledger import LedgerEntry, DayStatus
from .menu import MenuItem, MenuItemIngredient
from .orders import Order, OrderLine, OrderAllocation, OrderSequence, SalesRecord
from .waste import WasteRecord, WASTE_CATEGORIES

__all__ = [
    'StockItem', 'InventoryLogEntry', 'STOCK_STATUSES',
    'LedgerEntry', 'DayStatus',
    'MenuItem', 'MenuItemIngredient',
    'Order', 'OrderLine', 'OrderAllocation', 'OrderSequence', 'SalesRecord',
    'WasteRecord', 'WASTE_CATEGORIES',
]
