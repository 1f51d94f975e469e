# cart_service/db/models.py
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from cart_service.db.database import Base


def utcnow() -> datetime:
    # Timestamps are stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class OrderStatus(str, enum.Enum):
    PAID = "paid"


# Catalog product, read-only here except for the stock decrement at materialization
class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = Column(String(64), primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)  # Units physically available
    image_url = Column(String, nullable=True)


# One reserved line per (identity, product)
class CartLine(Base):
    __tablename__ = "cart_lines"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_cart_lines_quantity_positive"),
    )

    identity = Column(String(128), primary_key=True)
    product_id = Column(String(64), ForeignKey("products.id"), primary_key=True, index=True)
    quantity = Column(Integer, nullable=False)
    reserved_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    product = relationship("Product", lazy="joined")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("gateway_order_id", "gateway_payment_id", name="uq_orders_payment_reference"),
    )

    id = Column(Integer, primary_key=True, index=True)
    identity = Column(String(128), nullable=False, index=True)
    total_price = Column(Numeric(10, 2), nullable=False)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PAID)
    gateway_order_id = Column(String(255), nullable=False)
    gateway_payment_id = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    items = relationship("OrderItem", back_populates="order", lazy="selectin", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    product_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)  # Price at purchase time

    order = relationship("Order", back_populates="items")
