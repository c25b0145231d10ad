# supply_hub/db_models_ext.py
"""
SQLAlchemy ORM Models for Supply Hub - Part 2: customer orders.

Continuation of db_models.py with the order aggregate and its change log.
"""
from __future__ import annotations
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    String, BigInteger, Boolean, Date, DateTime,
    ForeignKey, Index, CheckConstraint, JSON,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supply_hub.database import Base
from supply_hub.db_models import (
    BigIntPK, QTY, MONEY, utcnow, enum_column,
    OrderStatus, OrderItemStatus, ChangeLogType,
    Product,
)


# ============================================================================
# 6. ORDERS
# ============================================================================

class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        enum_column(OrderStatus, "order_status"),
        default=OrderStatus.created,
        nullable=False,
    )
    trip_number: Mapped[Optional[str]] = mapped_column(String(50))
    # cached, always round2(sum(qty_ordered * unit_price))
    total_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    stock_deducted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pending_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_modified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    change_logs: Mapped[List["OrderChangeLog"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderChangeLog.id",
    )

    __table_args__ = (
        Index("idx_orders_customer_delivery", "customer_id", "delivery_date", "status"),
        Index("idx_orders_trip", "trip_number"),
        Index("idx_orders_pending_review", "pending_review"),
    )


# ============================================================================
# 7. ORDER ITEMS
# ============================================================================

class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    qty_ordered: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    qty_picked: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    # price snapshot taken when the line was written
    unit_price: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    picked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    out_of_stock: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[OrderItemStatus] = mapped_column(
        enum_column(OrderItemStatus, "order_item_status"),
        default=OrderItemStatus.created,
        nullable=False,
    )

    # Relationships
    order: Mapped["Order"] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship()

    __table_args__ = (
        CheckConstraint("qty_ordered > 0", name="chk_order_items_qty_positive"),
        CheckConstraint("qty_picked >= 0", name="chk_order_items_picked_non_negative"),
        Index("idx_order_items_order", "order_id"),
        Index("idx_order_items_product", "product_id"),
    )


# ============================================================================
# 8. ORDER CHANGE LOGS (APPEND-ONLY)
# ============================================================================

class OrderChangeLog(Base):
    __tablename__ = "order_change_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[ChangeLogType] = mapped_column(enum_column(ChangeLogType, "change_log_type"), nullable=False)
    detail: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Relationships
    order: Mapped["Order"] = relationship(back_populates="change_logs")

    __table_args__ = (
        Index("idx_change_logs_order", "order_id"),
    )
