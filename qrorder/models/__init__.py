"""Models package - exports all SQLAlchemy models."""
# Catalog (read-only for the ordering core)
from qrorder.models.restaurant import Restaurant
from qrorder.models.table import DiningTable
from qrorder.models.menu_item import MenuItem, MenuItemExtra
from qrorder.models.schedule import OperatingHour, ScheduleException

# Orders
from qrorder.models.order import (
    Order, OrderStatus, PaymentStatus, PaymentMethod,
    TERMINAL_ORDER_STATUSES, PAYABLE_STATUSES
)
from qrorder.models.order_item import OrderItem, OrderItemExtra

# Processor notifications
from qrorder.models.mp_webhook_event import MPWebhookEvent

__all__ = [
    'Restaurant', 'DiningTable', 'MenuItem', 'MenuItemExtra',
    'OperatingHour', 'ScheduleException',
    'Order', 'OrderStatus', 'PaymentStatus', 'PaymentMethod',
    'TERMINAL_ORDER_STATUSES', 'PAYABLE_STATUSES',
    'OrderItem', 'OrderItemExtra',
    'MPWebhookEvent',
]
