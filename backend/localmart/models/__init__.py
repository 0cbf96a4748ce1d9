from .users import User, SessionToken
from .catalog import Store, Product
from .bargains import Bargain, BargainMessage
from .orders import Order, OrderLine, OrderStatusHistory
from .settlement import SettlementTransaction
from .notifications import Notification
from .sequences import SequenceCounter

__all__ = [
    'User', 'SessionToken',
    'Store', 'Product',
    'Bargain', 'BargainMessage',
    'Order', 'OrderLine', 'OrderStatusHistory',
    'SettlementTransaction',
    'Notification',
    'SequenceCounter',
]
