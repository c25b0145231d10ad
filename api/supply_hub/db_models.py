# supply_hub/db_models.py
"""
SQLAlchemy ORM Models for Supply Hub - catalog, stock ledger, receiving
and supplier invoices.

Orders live in db_models_ext.py.
"""
from __future__ import annotations
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional, List
import enum

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, Text, Date, DateTime,
    Numeric, ForeignKey, Index, CheckConstraint, UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supply_hub.database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

QTY = Numeric(12, 3)
MONEY = Numeric(12, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class WarehouseType(str, enum.Enum):
    dry = "dry"
    fresh = "fresh"
    frozen = "frozen"


class MovementType(str, enum.Enum):
    inbound = "in"
    outbound = "out"
    return_in = "return"
    damage = "damage"


class OrderStatus(str, enum.Enum):
    created = "created"
    confirmed = "confirmed"
    shipped = "shipped"
    completed = "completed"
    cancelled = "cancelled"


class OrderItemStatus(str, enum.Enum):
    created = "created"
    picked = "picked"
    out_of_stock = "out_of_stock"


class ChangeLogType(str, enum.Enum):
    order_created = "order_created"
    merged_order_update = "merged_order_update"
    item_added = "item_added"
    item_removed = "item_removed"
    item_updated = "item_updated"


class ReconcileStatus(str, enum.Enum):
    pending = "pending"
    reconciled = "reconciled"
    discrepancy = "discrepancy"


class InvoiceStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    partial = "partial"


class MatchStatus(str, enum.Enum):
    auto_confirmed = "auto_confirmed"
    manual_confirmed = "manual_confirmed"
    need_review = "need_review"
    unmatched = "unmatched"
    ignored = "ignored"


def enum_column(enum_cls, name: str) -> SQLEnum:
    # persist .value, not the member name
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ============================================================================
# 1. SUPPLIERS
# ============================================================================

class Supplier(Base):
    __tablename__ = "suppliers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    contact: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    receiving_batches: Mapped[List["ReceivingBatch"]] = relationship(back_populates="supplier")
    invoices: Mapped[List["SupplierInvoice"]] = relationship(back_populates="supplier")


# ============================================================================
# 2. PRODUCTS
# ============================================================================

class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    warehouse_type: Mapped[WarehouseType] = mapped_column(
        enum_column(WarehouseType, "warehouse_type"),
        default=WarehouseType.dry,
        nullable=False,
    )
    price: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # written only through services.stock.StockLedger
    stock: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500))

    # Relationships
    stock_movements: Mapped[List["StockMovement"]] = relationship(back_populates="product")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="chk_products_stock_non_negative"),
        CheckConstraint("price >= 0", name="chk_products_price_non_negative"),
        Index("idx_products_warehouse_type", "warehouse_type"),
    )


# ============================================================================
# 3. STOCK MOVEMENTS (APPEND-ONLY LEDGER)
# ============================================================================

class StockMovement(Base):
    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    movement_type: Mapped[MovementType] = mapped_column(enum_column(MovementType, "movement_type"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    log_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    remark: Mapped[Optional[str]] = mapped_column(String(500))
    partner_name: Mapped[Optional[str]] = mapped_column(String(255))
    reason: Mapped[Optional[str]] = mapped_column(String(500))
    ref_order_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("orders.id", ondelete="SET NULL"))
    batch_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("receiving_batches.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    product: Mapped["Product"] = relationship(back_populates="stock_movements")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_movements_quantity_positive"),
        Index("idx_movements_product", "product_id"),
        Index("idx_movements_type", "movement_type"),
        Index("idx_movements_order", "ref_order_id"),
        Index("idx_movements_batch", "batch_id"),
    )


# ============================================================================
# 4. RECEIVING BATCHES
# ============================================================================

class ReceivingBatch(Base):
    __tablename__ = "receiving_batches"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    batch_no: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    received_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500))
    reconcile_status: Mapped[ReconcileStatus] = mapped_column(
        enum_column(ReconcileStatus, "reconcile_status"),
        default=ReconcileStatus.pending,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    supplier: Mapped["Supplier"] = relationship(back_populates="receiving_batches")
    items: Mapped[List["ReceivingBatchItem"]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="ReceivingBatchItem.id",
    )

    __table_args__ = (
        UniqueConstraint("batch_no", name="uq_receiving_batches_batch_no"),
        Index("idx_receiving_batches_supplier_date", "supplier_id", "received_date"),
    )


class ReceivingBatchItem(Base):
    __tablename__ = "receiving_batch_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    batch_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("receiving_batches.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)

    # Relationships
    batch: Mapped["ReceivingBatch"] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_batch_items_quantity_positive"),
        Index("idx_batch_items_batch", "batch_id"),
        Index("idx_batch_items_product", "product_id"),
    )


# ============================================================================
# 5. SUPPLIER INVOICES
# ============================================================================

class SupplierInvoice(Base):
    __tablename__ = "supplier_invoices"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    invoice_no: Mapped[Optional[str]] = mapped_column(String(100))
    supplier_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    invoice_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    period_start: Mapped[Optional[date]] = mapped_column(Date)
    period_end: Mapped[Optional[date]] = mapped_column(Date)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        enum_column(InvoiceStatus, "invoice_status"),
        default=InvoiceStatus.pending,
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(String(500))

    # Relationships
    supplier: Mapped["Supplier"] = relationship(back_populates="invoices")
    items: Mapped[List["SupplierInvoiceItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="SupplierInvoiceItem.id",
    )

    __table_args__ = (
        Index("idx_supplier_invoices_supplier", "supplier_id"),
        Index("idx_supplier_invoices_status", "status"),
    )


class SupplierInvoiceItem(Base):
    __tablename__ = "supplier_invoice_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("supplier_invoices.id", ondelete="CASCADE"), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("products.id", ondelete="SET NULL"))
    quantity: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    matched_qty: Mapped[Optional[Decimal]] = mapped_column(QTY)
    match_status: Mapped[MatchStatus] = mapped_column(
        enum_column(MatchStatus, "match_status"),
        default=MatchStatus.unmatched,
        nullable=False,
    )
    discrepancy_notes: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    invoice: Mapped["SupplierInvoice"] = relationship(back_populates="items")

    __table_args__ = (
        Index("idx_invoice_items_invoice", "invoice_id"),
        Index("idx_invoice_items_match_status", "invoice_id", "match_status"),
    )
