from .placement import Branch, Warehouse, OnlineShop
from .catalog import Product, Distributor
from .auth import User
from .inventory import Unit, QuantityBucket, LedgerEntry, LedgerImmutableError
from .stock_out import StockOut, StockOutItem, StockOutShipment

__all__ = [
    'Branch', 'Warehouse', 'OnlineShop',
    'Product', 'Distributor',
    'User',
    'Unit', 'QuantityBucket', 'LedgerEntry', 'LedgerImmutableError',
    'StockOut', 'StockOutItem', 'StockOutShipment',
]
