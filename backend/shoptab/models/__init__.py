from .tenancy import User, Shop, Product
from .auth import SessionToken
from .cart import Cart, CartItem
from .orders import Order, OrderItem, OrderSequence
from .audit import OrderStatusHistory, OrderModification, OrderItemModification
from .credit import CreditAccount, CreditTransaction

__all__ = [
    'User', 'Shop', 'Product',
    'SessionToken',
    'Cart', 'CartItem',
    'Order', 'OrderItem', 'OrderSequence',
    'OrderStatusHistory', 'OrderModification', 'OrderItemModification',
    'CreditAccount', 'CreditTransaction',
]
