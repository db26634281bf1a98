from app.models.database import Base, get_db
from app.models.user import User
from app.models.product import Product
from app.models.order import Order, OrderItem, OrderStatus, SubOrder

__all__ = ["Base", "get_db", "User", "Product", "Order", "OrderItem", "OrderStatus", "SubOrder"]
