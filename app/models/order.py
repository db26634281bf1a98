from enum import Enum

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.models.database import Base


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (CheckConstraint("status IN ('PENDING', 'PROCESSED')", name="ck_orders_status"),)

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(32), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)  # PENDING | PROCESSED
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    payment_attempt = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    sub_orders = relationship(
        "SubOrder",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="SubOrder.id",
    )


class SubOrder(Base):
    __tablename__ = "sub_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    tracking_number = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="sub_orders")
    items = relationship(
        "OrderItem",
        back_populates="sub_order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),)

    id = Column(Integer, primary_key=True, index=True)
    sub_order_id = Column(Integer, ForeignKey("sub_orders.id"), nullable=False, index=True)
    # Weak reference: product data may change later without touching the snapshot.
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    hs_code = Column(String(32), nullable=True)

    sub_order = relationship("SubOrder", back_populates="items")
    product = relationship("Product", lazy="joined")
