from app.repositories.orders import OrderRepository
from app.repositories.products import ProductRepository
from app.repositories.users import UserRepository

__all__ = ["OrderRepository", "ProductRepository", "UserRepository"]
