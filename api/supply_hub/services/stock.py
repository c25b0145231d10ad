# supply_hub/services/stock.py
"""
Stock ledger.

``StockLedger`` is the only code path that writes ``Product.stock``. Every
credit/debit appends a StockMovement row in the caller's transaction, so the
movement history always explains the current stock figure.
"""
from __future__ import annotations
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from supply_hub.database import transaction
from supply_hub.db_models import Product, StockMovement, MovementType, WarehouseType, utcnow
from supply_hub.exceptions import NotFoundError, ValidationError, InsufficientStockError
from supply_hub.utils import clip_text, decimal_out, to_decimal

logger = logging.getLogger(__name__)

LOG_TYPES = {m.value for m in MovementType}


def product_to_dict(p: Product) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "unit": p.unit,
        "warehouseType": p.warehouse_type.value,
        "price": decimal_out(p.price),
        "isAvailable": p.is_available,
        "stock": decimal_out(p.stock),
        "notes": p.notes,
    }


def movement_to_dict(m: StockMovement, product: Optional[Product] = None) -> Dict[str, Any]:
    out = {
        "id": m.id,
        "productId": m.product_id,
        "type": m.movement_type.value,
        "quantity": decimal_out(m.quantity),
        "logDate": m.log_date.isoformat() if m.log_date else None,
        "remark": m.remark,
        "partnerName": m.partner_name,
        "reason": m.reason,
        "refOrderId": m.ref_order_id,
        "batchId": m.batch_id,
    }
    if product is not None:
        out.update(productName=product.name, unit=product.unit, warehouseType=product.warehouse_type.value)
    return out


class StockLedger:
    """Credits and debits product stock inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lock_products(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        """Re-read products with a row lock (FOR UPDATE on PostgreSQL)."""
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        stmt = (
            select(Product)
            .where(Product.id.in_(ids))
            .order_by(Product.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        rows = (await self.db.execute(stmt)).scalars().all()
        return {p.id: p for p in rows}

    async def get_product(self, product_id: int) -> Product:
        found = await self.lock_products([product_id])
        product = found.get(product_id)
        if product is None:
            raise NotFoundError.for_entity("Product", product_id)
        return product

    def _movement(self, product: Product, qty: Decimal, movement_type: MovementType, **kw) -> StockMovement:
        m = StockMovement(
            product_id=product.id,
            movement_type=movement_type,
            quantity=qty,
            log_date=kw.pop("log_date", None) or utcnow(),
            **kw,
        )
        self.db.add(m)
        return m

    def credit(
        self,
        product: Product,
        qty: Decimal,
        movement_type: MovementType = MovementType.inbound,
        **movement_fields,
    ) -> StockMovement:
        if qty <= 0:
            raise ValidationError("quantity must be greater than 0")
        product.stock = (product.stock or Decimal("0")) + qty
        return self._movement(product, qty, movement_type, **movement_fields)

    def debit(
        self,
        product: Product,
        qty: Decimal,
        movement_type: MovementType = MovementType.outbound,
        **movement_fields,
    ) -> StockMovement:
        if qty <= 0:
            raise ValidationError("quantity must be greater than 0")
        current = product.stock or Decimal("0")
        if current < qty:
            raise InsufficientStockError([
                {"productId": product.id, "name": product.name, "stock": current, "required": qty},
            ])
        product.stock = current - qty
        return self._movement(product, qty, movement_type, **movement_fields)


class InventoryService:
    """Manual ledger operations: inbound, customer returns, damages."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = StockLedger(db)

    @staticmethod
    def _positive(value: Any, field: str) -> Decimal:
        d = to_decimal(value)
        if d is None or d <= 0:
            raise ValidationError(f"{field} must be a positive number")
        return d

    @staticmethod
    def _parse_log_date(value: Any) -> Optional[datetime]:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("logDate must be a valid date")

    async def inbound(self, product_id: int, quantity: Any, log_date: Any = None, remark: Optional[str] = None) -> Product:
        qty = self._positive(quantity, "quantity")
        when = self._parse_log_date(log_date)
        async with transaction(self.db):
            product = await self.ledger.get_product(product_id)
            self.ledger.credit(product, qty, MovementType.inbound, log_date=when, remark=clip_text(remark))
        logger.info(f"Inbound {qty} of product {product_id}, stock now {product.stock}")
        return product

    async def record_return(
        self,
        product_id: int,
        quantity: Any,
        partner_name: Optional[str],
        reason: Optional[str] = None,
        log_date: Any = None,
    ) -> Product:
        qty = self._positive(quantity, "quantity")
        partner = (partner_name or "").strip()
        if not partner:
            raise ValidationError("partnerName is required")
        when = self._parse_log_date(log_date)
        async with transaction(self.db):
            product = await self.ledger.get_product(product_id)
            self.ledger.credit(
                product, qty, MovementType.return_in,
                log_date=when, partner_name=partner[:255], reason=clip_text(reason),
            )
        logger.info(f"Return of {qty} x product {product_id} from {partner}")
        return product

    async def record_damage(self, product_id: int, quantity: Any, reason: Optional[str] = None, log_date: Any = None) -> Product:
        qty = self._positive(quantity, "quantity")
        when = self._parse_log_date(log_date)
        try:
            async with transaction(self.db):
                product = await self.ledger.get_product(product_id)
                self.ledger.debit(product, qty, MovementType.damage, log_date=when, reason=clip_text(reason))
        except InsufficientStockError:
            logger.warning(f"Damage of {qty} x product {product_id} rejected: insufficient stock")
            raise
        logger.info(f"Damage of {qty} x product {product_id} written off")
        return product

    async def list_logs(self, movement_type: Optional[str] = None, limit: int = 20) -> List[Dict[str, Any]]:
        if movement_type and movement_type not in LOG_TYPES:
            raise ValidationError(f"type must be one of {'|'.join(sorted(LOG_TYPES))}")
        if limit < 1 or limit > 100:
            raise ValidationError("limit must be 1-100")

        stmt = (
            select(StockMovement, Product)
            .join(Product, Product.id == StockMovement.product_id)
            .order_by(StockMovement.id.desc())
            .limit(limit)
        )
        if movement_type:
            stmt = stmt.where(StockMovement.movement_type == MovementType(movement_type))
        rows = (await self.db.execute(stmt)).all()
        return [movement_to_dict(m, p) for m, p in rows]

    async def summary(
        self,
        q: Optional[str] = None,
        warehouse_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        if limit < 1 or limit > 500:
            raise ValidationError("limit must be between 1 and 500")
        if offset < 0:
            raise ValidationError("offset must be >= 0")

        filters = []
        if q:
            filters.append(Product.name.contains(q))
        if warehouse_type:
            try:
                filters.append(Product.warehouse_type == WarehouseType(warehouse_type))
            except ValueError:
                raise ValidationError(f"Unknown warehouseType: {warehouse_type}")

        total = (await self.db.execute(select(func.count(Product.id)).where(*filters))).scalar_one()
        rows = (await self.db.execute(
            select(Product).where(*filters).order_by(Product.name.asc()).limit(limit).offset(offset)
        )).scalars().all()
        return {"total": total, "items": [product_to_dict(p) for p in rows]}
