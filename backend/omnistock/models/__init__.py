from .catalog import Store, Product, ProductVariant
from .inventory import Inventory, InventoryTransfer
from .sequences import SequenceCounter
from .orders import Order, OrderItem
from .purchases import Purchase, PurchaseItem

__all__ = [
    'Store', 'Product', 'ProductVariant',
    'Inventory', 'InventoryTransfer',
    'SequenceCounter',
    'Order', 'OrderItem',
    'Purchase', 'PurchaseItem',
]
