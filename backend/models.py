"""
ORM models for the storefront.

Each class maps one table. Timestamps are stored as naive UTC datetimes.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value):
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class UserRole:
    BUYER = "BUYER"
    SELLER = "SELLER"


class OrderStatus:
    PAID = "PAID"
    SHIPPING = "SHIPPING"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"


class InquiryStatus:
    WAITING = "WaitingAnswer"
    COMPLETED = "CompletedAnswer"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(100), nullable=False, unique=True)
    password_hash = Column(String(128), nullable=False)
    salt = Column(String(64), nullable=False)
    type = Column(String(10), nullable=False, default=UserRole.BUYER)
    image = Column(String(500))
    refresh_token = Column(String(512))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    point = relationship("UserPoint", back_populates="user", uselist=False, cascade="all, delete-orphan")
    store = relationship("Store", back_populates="seller", uselist=False)


class UserPoint(Base):
    """Point balance, lifetime spend and the membership grade derived from it."""

    __tablename__ = "user_points"
    __table_args__ = (CheckConstraint("points >= 0", name="ck_user_points_points"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    points = Column(Integer, nullable=False, default=0)
    accumulated_amount = Column(Integer, nullable=False, default=0)
    grade = Column(String(20), nullable=False, default="Green")
    point_rate = Column(Float, nullable=False, default=0.01)

    user = relationship("User", back_populates="point")


class Store(Base):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    address = Column(String(255), nullable=False)
    phone_number = Column(String(30), nullable=False)
    description = Column(Text)
    image = Column(String(500))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    seller = relationship("User", back_populates="store")
    products = relationship("Product", back_populates="store")


class FavoriteStore(Base):
    __tablename__ = "favorite_stores"
    __table_args__ = (UniqueConstraint("user_id", "store_id", name="uq_favorite_user_store"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    store = relationship("Store")


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    name = Column(String(255), nullable=False)
    content = Column(Text)
    image = Column(String(500))
    price = Column(Integer, nullable=False)
    discount_rate = Column(Integer, nullable=False, default=0)
    discount_start = Column(DateTime)
    discount_end = Column(DateTime)
    total_sales = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    store = relationship("Store", back_populates="products")
    category = relationship("Category")
    stocks = relationship("ProductStock", back_populates="product", cascade="all, delete-orphan",
                          order_by="ProductStock.id")
    reviews = relationship("Review", back_populates="product", cascade="all, delete-orphan")

    def discount_active(self, now=None) -> bool:
        if not self.discount_rate or not self.discount_start or not self.discount_end:
            return False
        now = now or utcnow()
        return self.discount_start <= now <= self.discount_end

    def discount_price(self, now=None):
        if not self.discount_active(now):
            return None
        return self.price - self.price * self.discount_rate // 100

    def current_price(self, now=None) -> int:
        discounted = self.discount_price(now)
        return self.price if discounted is None else discounted

    @property
    def is_sold_out(self) -> bool:
        return all(stock.quantity == 0 for stock in self.stocks)


class ProductStock(Base):
    __tablename__ = "product_stocks"
    __table_args__ = (
        UniqueConstraint("product_id", "size", name="uq_stock_product_size"),
        CheckConstraint("quantity >= 0", name="ck_stock_quantity"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    size = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="stocks")


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("user_id", "product_id", "size", name="uq_cart_user_product_size"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    size = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    product = relationship("Product")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(40), nullable=False, unique=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.PAID)
    subtotal = Column(Integer, nullable=False)
    used_points = Column(Integer, nullable=False, default=0)
    earned_points = Column(Integer, nullable=False, default=0)
    total_amount = Column(Integer, nullable=False)
    recipient_name = Column(String(100), nullable=False)
    recipient_phone = Column(String(30), nullable=False)
    delivery_address = Column(String(255), nullable=False)
    payment_date = Column(DateTime, index=True)
    canceled_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.id")


class OrderItem(Base):
    """Line item; price is the unit price at the time of purchase."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    size = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    review = relationship("Review", back_populates="order_item", uselist=False)


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False, unique=True)
    rating = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User")
    product = relationship("Product", back_populates="reviews")
    order_item = relationship("OrderItem", back_populates="review")


class Inquiry(Base):
    __tablename__ = "inquiries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    is_secret = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=InquiryStatus.WAITING)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User")
    product = relationship("Product")
    reply = relationship("InquiryReply", back_populates="inquiry", uselist=False, cascade="all, delete-orphan")


class InquiryReply(Base):
    __tablename__ = "inquiry_replies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    inquiry_id = Column(Integer, ForeignKey("inquiries.id", ondelete="CASCADE"), nullable=False, unique=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    inquiry = relationship("Inquiry", back_populates="reply")
    seller = relationship("User")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    message = Column(String(500), nullable=False)
    type = Column(String(40), nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
