from .directory import User, Client, Contract
from .inventory import Product, InventoryMovement, MOVEMENT_IN, MOVEMENT_OUT
from .deals import Deal, DealItem, DealStatusChange, Shipment
from .finance import Payment, DailyClosing
from .audit import AuditLog

__all__ = [
    'User', 'Client', 'Contract',
    'Product', 'InventoryMovement', 'MOVEMENT_IN', 'MOVEMENT_OUT',
    'Deal', 'DealItem', 'DealStatusChange', 'Shipment',
    'Payment', 'DailyClosing',
    'AuditLog',
]
