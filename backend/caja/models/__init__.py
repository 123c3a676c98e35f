from .shifts import Shift, CashCount, CashCountLine
from .orders import DiningTable, Order, OrderItem, OrderDraft
from .payments import Settlement, Payment
from .discounts import DiscountPreset, AppliedDiscount
from .refunds import Refund
from .settings import Setting
from .ledger import LedgerEvent

__all__ = [
    'Shift', 'CashCount', 'CashCountLine',
    'DiningTable', 'Order', 'OrderItem', 'OrderDraft',
    'Settlement', 'Payment',
    'DiscountPreset', 'AppliedDiscount',
    'Refund',
    'Setting',
    'LedgerEvent',
]
