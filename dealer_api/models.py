from typing import Any

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, Integer, Float, Text, DateTime, JSON, ForeignKey
from datetime import datetime

from .utils import utcnow, new_id


class Base(DeclarativeBase):
    pass


QUOTE_STATUSES = ("Draft", "Sent", "Accepted", "Rejected")
ORDER_STATUSES = ("Pending", "Processing", "Delivered", "Cancelled")


# ════════════════════════════════════════════════
# VEHICLE — inventory catalogue, one row per SKU configuration
# ════════════════════════════════════════════════
class Vehicle(Base):
    __tablename__ = "vehicles"
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    sku: Mapped[str] = mapped_column(String(80), index=True, nullable=False)
    model: Mapped[str] = mapped_column(String(120), default="")
    version: Mapped[str] = mapped_column(String(120), default="")
    color: Mapped[str] = mapped_column(String(60), default="")
    specs: Mapped[dict] = mapped_column(JSON, default=dict)  # battery, range, power...
    msrp: Mapped[float] = mapped_column(Float, default=0.0)
    stock_total: Mapped[int] = mapped_column(Integer, default=0)
    # [{"dealerId": "d1", "qty": 3}, ...]
    stock_by_dealer: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# ════════════════════════════════════════════════
# CUSTOMER
# ════════════════════════════════════════════════
class Customer(Base):
    __tablename__ = "customers"
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str] = mapped_column(String(40), default="")
    email: Mapped[str] = mapped_column(String(254), default="")
    address: Mapped[str] = mapped_column(String(300), default="")
    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# ════════════════════════════════════════════════
# QUOTE — priced proposal; total frozen at creation
# ════════════════════════════════════════════════
class Quote(Base):
    __tablename__ = "quotes"
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    dealer_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    # Plain reference, no FK: customers are looked up by id, never cascaded
    customer_id: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    discounts: Mapped[Any] = mapped_column(JSON, nullable=True)
    total: Mapped[float] = mapped_column(Float, default=0.0)
    status: Mapped[str] = mapped_column(String(16), default="Draft")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    items: Mapped[list["QuoteItem"]] = relationship(
        lazy="selectin", order_by="QuoteItem.position", cascade="all, delete-orphan",
    )


class QuoteItem(Base):
    __tablename__ = "quote_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quote_id: Mapped[str] = mapped_column(String(32), ForeignKey("quotes.id"), index=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    vehicle_sku: Mapped[str] = mapped_column(String(80), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)


# ════════════════════════════════════════════════
# ORDER — committed sale with payment + delivery tracking
# ════════════════════════════════════════════════
class Order(Base):
    __tablename__ = "orders"
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    dealer_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    created_by: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    customer_id: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    quote_id: Mapped[str | None] = mapped_column(String(32), nullable=True)

    payment_method: Mapped[str | None] = mapped_column(String(40), nullable=True)
    payment_status: Mapped[str | None] = mapped_column(String(40), nullable=True)
    payment_plan: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    delivery_status: Mapped[str | None] = mapped_column(String(40), nullable=True)
    delivery_eta: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    delivery_tracking: Mapped[str | None] = mapped_column(String(120), nullable=True)

    status: Mapped[str] = mapped_column(String(16), default="Pending")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    items: Mapped[list["OrderItem"]] = relationship(
        lazy="selectin", order_by="OrderItem.position", cascade="all, delete-orphan",
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(32), ForeignKey("orders.id"), index=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    vehicle_sku: Mapped[str] = mapped_column(String(80), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
