from .auth import User, SessionToken
from .inventory import Category, Product, StockTransaction
from .customers import Agent, Customer
from .sales import Order, OrderItem
from .invoices import Invoice
from .documents import DocumentSequence

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product', 'StockTransaction',
    'Agent', 'Customer',
    'Order', 'OrderItem',
    'Invoice',
    'DocumentSequence',
]
